"""Target classification and the persisted chat binding."""

from avito_watcher.targets.binding_store import Binding, BindingStore
from avito_watcher.targets.classifier import Classification, TargetKind, classify

__all__ = ["Binding", "BindingStore", "Classification", "TargetKind", "classify"]
