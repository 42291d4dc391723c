"""Map session: the layers and standalone tables loaded for a search.

A session is passed explicitly through every export call. It does not own
any data; it only references datasets in its workspace by name and keeps a
per-layer selection.

Selection semantics:
- None means "no selection", operations then read every row
- an empty frozenset means an explicit selection of zero rows
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from shapely.strtree import STRtree

from datasearches.core.errors import WorkspaceError
from datasearches.core.logging import get_logger
from datasearches.engine.workspace import Workspace

logger = get_logger(__name__)


class SelectionMethod(str, Enum):
    """How a new selection combines with an existing one."""

    NEW = "new"
    AND = "and"
    ADD = "add"


@dataclass
class Layer:
    """A feature class loaded in the session."""

    name: str
    selection: frozenset[int] | None = None


@dataclass
class MapSession:
    """Explicit handle for the loaded layers and tables of one search."""

    workspace: Workspace
    layers: list[Layer] = field(default_factory=list)
    tables: list[str] = field(default_factory=list)

    # === Registry ===

    def add_layer(self, name: str) -> Layer:
        """Register a feature class. The same name may be added repeatedly."""
        if not self.workspace.exists(name):
            raise WorkspaceError(f"Cannot add {name} to the session: dataset does not exist")
        layer = Layer(name=self.workspace.catalog_name(name))
        self.layers.append(layer)
        return layer

    def add_table(self, name: str) -> None:
        if not self.workspace.exists(name):
            raise WorkspaceError(f"Cannot add {name} to the session: table does not exist")
        self.tables.append(self.workspace.catalog_name(name))

    def find_layer(self, name: str) -> Layer | None:
        """First layer registered under this name (case-insensitive)."""
        wanted = name.lower()
        for layer in self.layers:
            if layer.name.lower() == wanted:
                return layer
        return None

    def has_layer(self, name: str) -> bool:
        return self.find_layer(name) is not None

    def has_table(self, name: str) -> bool:
        wanted = name.lower()
        return any(t.lower() == wanted for t in self.tables)

    def remove_layer(self, name: str) -> bool:
        """Remove the first layer with this name. Returns False if none was loaded."""
        layer = self.find_layer(name)
        if layer is None:
            return False
        self.layers.remove(layer)
        return True

    def remove_table(self, name: str) -> bool:
        wanted = name.lower()
        for i, table in enumerate(self.tables):
            if table.lower() == wanted:
                del self.tables[i]
                return True
        return False

    def _require_layer(self, name: str) -> Layer:
        layer = self.find_layer(name)
        if layer is None:
            raise WorkspaceError(f"Layer {name} is not loaded in the session")
        return layer

    # === Selection ===

    def selected_ids(self, name: str) -> frozenset[int] | None:
        """Selection of a loaded layer, None when nothing is selected or not loaded."""
        layer = self.find_layer(name)
        return layer.selection if layer is not None else None

    def selection_count(self, name: str) -> int:
        """Number of selected features (0 when the layer has no selection)."""
        selection = self.selected_ids(name)
        return len(selection) if selection is not None else 0

    def clear_selection(self, name: str) -> None:
        self._require_layer(name).selection = None

    def _apply(self, layer: Layer, ids: frozenset[int], method: SelectionMethod) -> int:
        if method == SelectionMethod.AND and layer.selection is not None:
            ids = layer.selection & ids
        elif method == SelectionMethod.ADD and layer.selection is not None:
            ids = layer.selection | ids
        layer.selection = ids
        return len(ids)

    def select_by_attributes(
        self, name: str, where: str, method: SelectionMethod = SelectionMethod.NEW
    ) -> int:
        """Select features matching an SQL predicate.

        Returns:
            Number of features selected afterwards
        """
        layer = self._require_layer(name)
        ids = self.workspace.select_ids(layer.name, where)
        count = self._apply(layer, ids, method)
        logger.debug("select_by_attributes", layer=layer.name, where=where, selected=count)
        return count

    def select_by_location(
        self, name: str, search_dataset: str, method: SelectionMethod = SelectionMethod.NEW
    ) -> int:
        """Select features that intersect any feature of the search dataset."""
        layer = self._require_layer(name)
        search_geoms = [
            g for _, g in self.workspace.read_geometries(search_dataset) if g is not None
        ]
        ids: set[int] = set()
        if search_geoms:
            tree = STRtree(search_geoms)
            for oid, geom in self.workspace.read_geometries(layer.name):
                if geom is None:
                    continue
                if len(tree.query(geom, predicate="intersects")) > 0:
                    ids.add(oid)
        count = self._apply(layer, frozenset(ids), method)
        logger.debug("select_by_location", layer=layer.name, search=search_dataset, selected=count)
        return count
