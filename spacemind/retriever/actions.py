"""
Actions

Closed dispatch table for actions a generation model may request by name
(function/tool calling). Each action has a typed argument model; names
outside the table are rejected rather than looked up dynamically.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..common.errors import UnknownActionError, ValidationError
from ..common.node_store import NodeStore
from ..common.schemas import Node, NodeSource, NodeType
from .searcher import Retriever

logger = logging.getLogger("spacemind.retriever.actions")

SEARCH_LIMIT = 5
DEFAULT_TAGS = ["AI-Generated"]


class SearchKnowledgeArgs(BaseModel):
    """Search existing notes and knowledge for information."""
    query: str = Field(..., min_length=1, description="Search term or topic")


class CreateNodeArgs(BaseModel):
    """Save a new note or idea to the knowledge base."""
    title: str = Field(..., min_length=1, description="Note title")
    summary: str = Field(..., description="Note content/summary")
    tags: Optional[List[str]] = Field(default=None, description="Tags")


@dataclass(frozen=True)
class Action:
    name: str
    args_model: Type[BaseModel]
    handler: Callable[["ActionDispatcher", Any], Dict[str, Any]]

    @property
    def description(self) -> str:
        return (self.args_model.__doc__ or "").strip()


def _mentions(node: Node, terms: List[str]) -> bool:
    title = node.title.lower()
    summary = (node.summary or "").lower()
    tags = [t.lower() for t in node.tags]
    return any(
        t in title or t in summary or any(t in tag for tag in tags)
        for t in terms
    )


def _search_knowledge_base(dispatcher: "ActionDispatcher", args: SearchKnowledgeArgs) -> Dict[str, Any]:
    nodes = dispatcher.store.get_nodes_for_space(dispatcher.space_id)
    terms = args.query.lower().split()
    # Ranking alone never filters, so require at least one term hit
    ranked = dispatcher.retriever.rank(args.query, nodes)
    hits = [s.node for s in ranked if _mentions(s.node, terms)][:SEARCH_LIMIT]

    if not hits:
        return {"result": "No matching notes found."}
    return {
        "result": f"Found {len(hits)} notes",
        "data": [{"title": n.title, "summary": n.summary} for n in hits],
    }


def _create_knowledge_node(dispatcher: "ActionDispatcher", args: CreateNodeArgs) -> Dict[str, Any]:
    node = Node(
        id=dispatcher.new_id(),
        space_id=dispatcher.space_id,
        type=NodeType.NOTE,
        title=args.title,
        summary=args.summary,
        tags=args.tags or list(DEFAULT_TAGS),
        created_at=dispatcher.now(),
        source=NodeSource.CHAT,
    )
    dispatcher.store.create_node(node)
    return {"result": "Successfully saved memory.", "id": node.id}


ACTIONS: Dict[str, Action] = {
    "search_knowledge_base": Action(
        "search_knowledge_base", SearchKnowledgeArgs, _search_knowledge_base,
    ),
    "create_knowledge_node": Action(
        "create_knowledge_node", CreateNodeArgs, _create_knowledge_node,
    ),
}


def _declaration_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reduce a pydantic JSON schema to the OpenAPI subset accepted in
    function declarations: no titles, defaults or anyOf, upper-case types.
    """
    if "anyOf" in schema:
        branch = next(s for s in schema["anyOf"] if s.get("type") != "null")
        schema = {**branch, **{k: v for k, v in schema.items() if k != "anyOf"}}

    reduced: Dict[str, Any] = {"type": schema["type"].upper()}
    if "description" in schema:
        reduced["description"] = schema["description"]
    if "items" in schema:
        reduced["items"] = _declaration_schema(schema["items"])
    if "properties" in schema:
        reduced["properties"] = {
            name: _declaration_schema(prop) for name, prop in schema["properties"].items()
        }
    if schema.get("required"):
        reduced["required"] = list(schema["required"])
    return reduced


def tool_declarations() -> List[Dict[str, Any]]:
    """Function declarations for providers that support tool calling."""
    declarations = []
    for action in ACTIONS.values():
        parameters = _declaration_schema(action.args_model.model_json_schema())
        parameters.pop("description", None)  # the docstring is the action description
        declarations.append({
            "name": action.name,
            "description": action.description,
            "parameters": parameters,
        })
    return declarations


class ActionDispatcher:
    """Runs named actions against one space."""

    def __init__(
        self,
        store: NodeStore,
        space_id: str,
        retriever: Optional[Retriever] = None,
    ):
        self.store = store
        self.space_id = space_id
        self.retriever = retriever or Retriever()

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)

    def dispatch(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Validate arguments and run an action.

        Raises:
            UnknownActionError: name is not in ACTIONS
            ValidationError: arguments do not match the action's model
        """
        action = ACTIONS.get(name)
        if action is None:
            raise UnknownActionError(name)

        try:
            args = action.args_model.model_validate(arguments or {})
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid arguments for {name}: {e}") from e

        started = time.monotonic()
        result = action.handler(self, args)
        logger.info(
            "Action %s on space %s finished in %.1f ms",
            name, self.space_id, (time.monotonic() - started) * 1000,
        )
        return result
