"""
Node Store

JSON-file persistence for spaces, nodes and chat histories.
The retrieval engine only reads from it; writes come from capture and
from the create_knowledge_node action.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .config import STORE_PATH
from .errors import StoreError
from .schemas import Node, Space, ChatHistory

logger = logging.getLogger("spacemind.common.node_store")

T = TypeVar("T", bound=BaseModel)


class NodeStore:
    """
    File-backed store persisted to ~/.spacemind/store.json.

    Layout:
        {"spaces": [...], "nodes": [...], "chat_histories": [...]}
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize node store.

        Args:
            path: Path to store file (default: ~/.spacemind/store.json)
        """
        self._path = Path(path) if path else STORE_PATH
        self._spaces: List[Space] = []
        self._nodes: List[Node] = []
        self._histories: List[ChatHistory] = []
        self._unreadable: Dict[str, List[Any]] = {}
        self._load_failed = False
        self._load()

    def _load(self) -> None:
        """
        Load store from disk.

        Records that fail validation are skipped one at a time and kept
        verbatim, so the next save writes them back unchanged. If the file
        itself cannot be read the store stays empty and refuses to save.
        """
        if not self._path.exists():
            return

        try:
            with open(self._path) as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("top level must be an object")
            for key in ("spaces", "nodes", "chat_histories"):
                if not isinstance(data.get(key) or [], list):
                    raise ValueError(f"{key} must be a list")
        except (json.JSONDecodeError, IOError, ValueError) as e:
            logger.warning("Failed to load store %s: %s", self._path, e)
            self._load_failed = True
            return

        self._spaces = self._load_records(data, "spaces", Space)
        self._nodes = self._load_records(data, "nodes", Node)
        self._histories = self._load_records(data, "chat_histories", ChatHistory)

    def _load_records(self, data: Dict[str, Any], key: str, model: Type[T]) -> List[T]:
        records: List[T] = []
        for item in data.get(key) or []:
            try:
                records.append(model.model_validate(item))
            except PydanticValidationError as e:
                logger.warning(
                    "Skipping invalid %s record in %s: %s",
                    model.__name__, self._path, e,
                )
                self._unreadable.setdefault(key, []).append(item)
        return records

    @property
    def skipped_records(self) -> int:
        """Records kept on disk but not loaded because they failed validation."""
        return sum(len(items) for items in self._unreadable.values())

    def _save(self) -> None:
        """
        Save store to disk.

        Raises:
            StoreError: the file failed to load, so writing would discard it
        """
        if self._load_failed:
            raise StoreError(
                f"Store {self._path} could not be loaded; refusing to overwrite it"
            )
        self._path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "spaces": [s.model_dump(mode="json", by_alias=True) for s in self._spaces],
            "nodes": [n.model_dump(mode="json", by_alias=True) for n in self._nodes],
            "chat_histories": [
                h.model_dump(mode="json", by_alias=True) for h in self._histories
            ],
        }
        for key, items in self._unreadable.items():
            data[key] = data[key] + items

        with open(self._path, "w") as f:
            json.dump(data, f, indent=2)

    # ------------------------------------------------------------------
    # Spaces
    # ------------------------------------------------------------------

    def get_spaces(self) -> List[Space]:
        return list(self._spaces)

    def get_space(self, space_id: str) -> Optional[Space]:
        for space in self._spaces:
            if space.id == space_id:
                return space
        return None

    def create_space(self, space: Space) -> None:
        self._spaces = [s for s in self._spaces if s.id != space.id]
        self._spaces.append(space)
        self._save()

    def delete_space(self, space_id: str) -> None:
        """Delete a space together with its nodes and chat histories."""
        self._spaces = [s for s in self._spaces if s.id != space_id]
        self._nodes = [n for n in self._nodes if n.space_id != space_id]
        self._histories = [h for h in self._histories if h.space_id != space_id]
        self._save()

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    def get_nodes_for_space(self, space_id: str) -> List[Node]:
        """Nodes of a space in insertion order."""
        return [n for n in self._nodes if n.space_id == space_id]

    def create_node(self, node: Node) -> None:
        self._nodes = [n for n in self._nodes if n.id != node.id]
        self._nodes.append(node)
        self._save()
        logger.info("Saved node %s to space %s", node.id, node.space_id)

    def delete_node(self, node_id: str) -> None:
        self._nodes = [n for n in self._nodes if n.id != node_id]
        self._save()

    # ------------------------------------------------------------------
    # Chat histories
    # ------------------------------------------------------------------

    def get_chat_histories(self, space_id: Optional[str] = None) -> List[ChatHistory]:
        if space_id is None:
            return list(self._histories)
        return [h for h in self._histories if h.space_id == space_id]

    def get_chat_history(self, history_id: str) -> Optional[ChatHistory]:
        for history in self._histories:
            if history.id == history_id:
                return history
        return None

    def save_chat_history(self, history: ChatHistory) -> None:
        self._histories = [h for h in self._histories if h.id != history.id]
        self._histories.append(history)
        self._save()

    def delete_chat_history(self, history_id: str) -> None:
        self._histories = [h for h in self._histories if h.id != history_id]
        self._save()
