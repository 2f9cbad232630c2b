from datetime import timedelta

from persynx import (
    INTEGER,
    STRING,
    KeyValueStore,
    Observable,
    ObservableList,
    StorageSession,
)
from persynx.inspect import print_storage

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Opening a session")
print("-" * 100)
print()

# The session owns the store. Pass a StorageConfig(storage_path=...) instead of a backend to
# persist to a JSON file.
session = StorageSession(backend=KeyValueStore()).initialize()

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Binding an observable")
print("-" * 100)
print()

counter = Observable("counter", 0)

# Nothing is stored yet, so the default is loaded and written once.
session.bind(
    "counter",
    counter,
    INTEGER,
    default=0,
    on_initial_load=lambda value: print(f"Loaded counter: {value}"),
    on_update=lambda value: print(f"Saved counter: {value}"),
)

counter.set(1)  # Saved counter: 1
counter.set(1)  # Same value, nothing happens
print(f"Stored counter: {session.get('counter')}")

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Listening to storage")
print("-" * 100)
print()

dispose = session.on_change("counter", lambda old, new: print(f"counter: {old} -> {new}"))
counter.set(2)

# Writes made with notifications off are reported once, afterwards.
def count_up():
    for n in range(3, 10):
        session.set("counter", n)


session.without_notifications(count_up, notify_keys_after=["counter"])
dispose()

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Lists and external changes")
print("-" * 100)
print()

tags = ObservableList("tags")
session.bind_list("tags", tags, STRING, default=[], propagate_external=True)
tags.subscribe(lambda value: print(f"tags is now {value}"))

tags.append("python")
session.set("tags", ["python", "storage"])  # Pushed into the observable
session.remove("tags")  # Collections fall back to empty

# ------------------------------------------------------------------------------------------------

print()
print("=" * 100)
print("Expiring values")
print("-" * 100)
print()

session.set_with_expiration("otp", "483920", timedelta(minutes=5))
print(f"OTP: {session.get_with_expiration('otp')}")

print_storage(session)
session.close()
