"""
Todo Store Example - Persisted Todo List

A small todo store whose state lives in a JSON file. Every change to the
observables is written through persynx, so running the script twice picks up
where the previous run stopped.

To run this example:
    $ pip install -e . && python examples/todo_store.py
"""

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from persynx import (
    STRING,
    Observable,
    ObservableList,
    StorageConfig,
    StorageSession,
    dataclass_codec,
)
from persynx.inspect import print_storage

# ==============================================================================================
# Constants
# ==============================================================================================

STORAGE_FILE = Path(__file__).with_name("todo_state.json")
FILTER_KEY = "todo_filter"
TODOS_KEY = "todos"
ADD_LOG_PREFIX = "📝 Added"
TOGGLE_LOG_PREFIX = "🔄 Toggled"
ERROR_LOG_PREFIX = "❌ Error"

# ==============================================================================================
# Logging Configuration
# ==============================================================================================

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


# ==============================================================================================
# Model
# ==============================================================================================


@dataclass
class TodoItem:
    text: str
    completed: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


# ==============================================================================================
# TodoStore
# ==============================================================================================


class TodoStore:
    """Todo list and filter, both bound to storage."""

    def __init__(self, session: StorageSession):
        self.session = session
        self.todos = ObservableList(TODOS_KEY)
        self.filter_mode = Observable(FILTER_KEY, "all")

        session.bind_list(
            TODOS_KEY,
            self.todos,
            dataclass_codec(TodoItem),
            default=[],
            on_error=lambda e: logger.warning(f"{ERROR_LOG_PREFIX} loading todos: {e}"),
        )
        session.bind(FILTER_KEY, self.filter_mode, STRING, default="all")

    def add(self, text: str) -> TodoItem:
        item = TodoItem(text)
        self.todos.append(item)
        logger.info(f"{ADD_LOG_PREFIX} {text!r}")
        return item

    def toggle(self, todo_id: str) -> None:
        for index, item in enumerate(self.todos):
            if item.id == todo_id:
                self.todos[index] = TodoItem(item.text, not item.completed, item.id)
                logger.info(f"{TOGGLE_LOG_PREFIX} {item.text!r}")
                return

    def clear_completed(self) -> None:
        self.todos.assign([item for item in self.todos if not item.completed])

    def visible(self):
        mode = self.filter_mode.value
        if mode == "active":
            return [item for item in self.todos if not item.completed]
        if mode == "completed":
            return [item for item in self.todos if item.completed]
        return list(self.todos)


if __name__ == "__main__":
    config = StorageConfig(storage_path=str(STORAGE_FILE), enable_logging=True)

    with StorageSession(config=config) as session:
        store = TodoStore(session)
        logger.info(f"Loaded {len(store.todos)} todos from {STORAGE_FILE.name}")

        first = store.add("Read the persynx docs")
        store.add("Bind an observable")
        store.toggle(first.id)
        store.filter_mode.set("active")

        for item in store.visible():
            logger.info(f"  [ ] {item.text}")

        print_storage(session)
