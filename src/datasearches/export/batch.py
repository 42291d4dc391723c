"""Batch searches driven by a YAML definition.

A search finds one site by reference, buffers it, and exports every
configured layer's features inside the buffer:

    reference: "2024/015"
    site_name: "Manor Farm"
    search_layer: SearchSites
    search_column: ref
    buffer_size: 500
    buffer_units: m
    output_root: ./searches
    save_folder: "%ref%"
    log_file_name: "DataSearch_%subref%.log"
    combined_sites:
      table_name: "%shortref%_sites"
      columns: "Layer,Name,Area"
    layers:
      - name: SSSI
        layer_name: SSSIs
        table_output_name: "SSSI_%shortref%"
        columns: '"SSSI",Name,Area'
        group_columns: Name
        statistics_columns: Area SUM
        include_area: true
        include_near_fields: true
        keep_layer: true
        output_type: CLIP

Usage:
    definition = load_search_definition(Path("search.yaml"))
    result = run_search(workspace, definition)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import duckdb
import yaml
from pydantic import BaseModel, Field, ValidationError

from datasearches.core.config import Settings, get_settings
from datasearches.core.errors import EngineOperationError, WorkspaceError
from datasearches.core.logging import SearchLog, get_logger, log_context
from datasearches.core.models import AreaUnit
from datasearches.engine.session import MapSession, SelectionMethod
from datasearches.engine.workspace import Workspace, quote_ident
from datasearches.export.csv_writer import write_csv
from datasearches.export.derived import NO_RADIUS
from datasearches.export.hooks import run_post_export_hook
from datasearches.export.naming import SearchStrings
from datasearches.export.pipeline import (
    ExportContext,
    ExportRequest,
    export_selection_to_csv,
    export_selection_to_feature_class,
)

logger = get_logger(__name__)

LOG_RULE = "-" * 71

BUFFER_UNIT_METRES = {"m": 1.0, "km": 1000.0}


class OutputType(str, Enum):
    """How a kept layer is cut to the search area."""

    COPY = "COPY"
    CLIP = "CLIP"
    INTERSECT = "INTERSECT"


class CombinedSitesMode(str, Enum):
    NONE = "none"
    APPEND = "append"
    OVERWRITE = "overwrite"


class LayerDefinition(BaseModel):
    """One layer to search and export."""

    name: str
    layer_name: str
    table_output_name: str = ""
    gis_output_name: str = ""
    columns: str
    group_columns: str = ""
    statistics_columns: str = ""
    order_columns: str = ""
    criteria: str = ""
    include_area: bool = False
    include_near_fields: bool = False
    include_radius: bool = False
    format: str = "csv"
    keep_layer: bool = False
    output_type: OutputType = OutputType.COPY
    combined_sites_columns: str = ""
    combined_sites_group_columns: str = ""
    combined_sites_statistics_columns: str = ""
    combined_sites_order_columns: str = ""
    macro_name: str | None = None


class CombinedSitesTable(BaseModel):
    """A single table that every layer appends its sites to."""

    table_name: str
    columns: str
    mode: CombinedSitesMode = CombinedSitesMode.OVERWRITE
    format: str = "csv"


class SearchDefinition(BaseModel):
    """A complete search: the site, the buffer and the layers."""

    reference: str
    site_name: str = ""
    search_layer: str
    search_column: str
    buffer_size: float = Field(gt=0)
    buffer_units: Literal["m", "km"] = "m"
    area_unit: AreaUnit = AreaUnit.HECTARES
    output_root: Path = Path(".")
    save_folder: str = "%ref%"
    log_file_name: str = "DataSearch_%subref%.log"
    clear_log: bool = False
    buffer_layer_name: str = "%shortref%_Buffer"
    combined_sites: CombinedSitesTable | None = None
    stop_on_error: bool = False
    layers: list[LayerDefinition] = Field(default_factory=list)

    @property
    def radius(self) -> str:
        return f"{self.buffer_size:g}{self.buffer_units}"

    @property
    def buffer_distance(self) -> float:
        return self.buffer_size * BUFFER_UNIT_METRES[self.buffer_units]


def load_search_definition(path: Path) -> SearchDefinition:
    """Load a search definition from YAML.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not valid YAML or not a valid definition
    """
    if not path.exists():
        raise FileNotFoundError(f"Search definition not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
        return SearchDefinition.model_validate(raw)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in search definition {path}: {e}") from e
    except ValidationError as e:
        raise ValueError(f"Invalid search definition {path}: {e}") from e


@dataclass
class LayerOutcome:
    name: str
    success: bool
    rows: int = 0
    table_path: Path | None = None
    kept_as: str | None = None


@dataclass
class SearchResult:
    reference: str
    output_folder: Path
    log_path: Path
    outcomes: list[LayerOutcome] = field(default_factory=list)
    aborted: bool = False

    @property
    def success(self) -> bool:
        return not self.aborted and all(o.success for o in self.outcomes)

    @property
    def failed_layers(self) -> list[str]:
        return [o.name for o in self.outcomes if not o.success]


def run_search(
    workspace: Workspace,
    definition: SearchDefinition,
    settings: Settings | None = None,
    session: MapSession | None = None,
    notify: Callable[[str], None] | None = None,
) -> SearchResult:
    """Run every layer of a search definition.

    A failing layer is logged and the loop carries on, unless the definition
    sets stop_on_error.
    """
    settings = settings or get_settings()
    rep_char = settings.rep_char
    strings = SearchStrings.build(
        definition.reference, definition.site_name, definition.radius, rep_char
    )
    output_folder = definition.output_root / strings.output_name(
        definition.save_folder, rep_char, is_path=True
    )
    output_folder.mkdir(parents=True, exist_ok=True)
    log_path = output_folder / strings.output_name(definition.log_file_name, rep_char)
    log = SearchLog(log_path, clear=definition.clear_log)

    result = SearchResult(
        reference=strings.reference, output_folder=output_folder, log_path=log_path
    )
    ctx = ExportContext.create(workspace, session, settings, log, notify)
    try:
        with log_context(reference=strings.reference):
            log.write(LOG_RULE)
            log.write(f"Processing search {strings.reference}")
            log.write(LOG_RULE)
            log.write("Parameters are as follows:")
            log.write(f"Buffer distance: {definition.radius}")
            log.write(f"Output location: {output_folder}")
            log.write(f"Layers to process: {len(definition.layers)}")
            log.write(f"Area measurement unit: {definition.area_unit.value}")

            buffer_name = _prepare_search_area(ctx, definition, strings)
            if buffer_name is None:
                log.write("Process aborted")
                result.aborted = True
                return result

            combined_path = _prepare_combined_table(ctx, definition, strings, output_folder)

            for layer in definition.layers:
                outcome = _process_layer(
                    ctx, definition, layer, strings, buffer_name, output_folder, combined_path
                )
                result.outcomes.append(outcome)
                if not outcome.success and definition.stop_on_error:
                    log.write("Process aborted")
                    result.aborted = True
                    return result

            log.write(LOG_RULE)
            log.write("Process complete")
            log.write(LOG_RULE)
    finally:
        ctx.close()
    return result


def _prepare_search_area(
    ctx: ExportContext, definition: SearchDefinition, strings: SearchStrings
) -> str | None:
    """Select the search site and buffer it. Returns the buffer dataset name."""
    session = ctx.session
    search_layer = definition.search_layer
    if not ctx.workspace.exists(search_layer):
        ctx.input_missing(search_layer, f"Cannot find search layer {search_layer}")
        return None
    if not session.has_layer(search_layer):
        session.add_layer(search_layer)

    reference = definition.reference.replace("'", "''")
    clause = f"{quote_ident(definition.search_column)} = '{reference}'"
    try:
        count = session.select_by_attributes(search_layer, clause)
    except duckdb.Error as e:
        ctx.fail(f"Cannot select {definition.reference} in {search_layer}: {e}")
        return None
    if count == 0:
        ctx.fail(f"No features found in {search_layer} for {definition.reference}")
        return None
    ctx.log.write(f"{count} feature(s) found in {search_layer}")

    buffer_name = strings.output_name(definition.buffer_layer_name, ctx.settings.rep_char)
    try:
        ctx.engine.run(
            "buffer",
            in_dataset=search_layer,
            out_dataset=buffer_name,
            distance=definition.buffer_distance,
            dissolve=True,
        )
    except EngineOperationError as e:
        ctx.fail(f"Cannot buffer {search_layer}: {e.describe()}")
        return None
    ctx.log.write(f"Buffer created: {buffer_name}")
    return buffer_name


def _prepare_combined_table(
    ctx: ExportContext, definition: SearchDefinition, strings: SearchStrings, output_folder: Path
) -> Path | None:
    combined = definition.combined_sites
    if combined is None or combined.mode == CombinedSitesMode.NONE:
        return None
    name = strings.output_name(combined.table_name, ctx.settings.rep_char)
    path = output_folder / f"{name}.{combined.format.lstrip('.').lower()}"
    if combined.mode == CombinedSitesMode.OVERWRITE or not path.exists():
        write_csv([], path, [], header=combined.columns)
        ctx.log.write(f"Combined sites table created: {path.name}")
    return path


def _process_layer(
    ctx: ExportContext,
    definition: SearchDefinition,
    layer: LayerDefinition,
    strings: SearchStrings,
    buffer_name: str,
    output_folder: Path,
    combined_path: Path | None,
) -> LayerOutcome:
    log = ctx.log
    session = ctx.session
    rep_char = ctx.settings.rep_char
    log.write(f"Starting analysis for {layer.name}")
    if not ctx.workspace.exists(layer.layer_name):
        ctx.input_missing(layer.layer_name, f"Cannot find layer {layer.layer_name}")
        return LayerOutcome(name=layer.name, success=False, rows=-1)
    if not session.has_layer(layer.layer_name):
        session.add_layer(layer.layer_name)

    with log_context(layer=layer.name):
        try:
            count = session.select_by_location(layer.layer_name, buffer_name)
            if layer.criteria:
                count = session.select_by_attributes(
                    layer.layer_name, layer.criteria, SelectionMethod.AND
                )
        except (duckdb.Error, WorkspaceError) as e:
            ctx.fail(f"Cannot select features in {layer.layer_name}: {e}")
            return LayerOutcome(name=layer.name, success=False, rows=-1)

        try:
            if count == 0:
                log.write(f"No features found in {layer.name}")
                return LayerOutcome(name=layer.name, success=True)
            log.write(f"{count} feature(s) found in {layer.name}")

            table_name = (
                strings.output_name(layer.table_output_name or layer.name, rep_char)
                + f".{layer.format.lstrip('.').lower()}"
            )
            table_path = output_folder / table_name
            request = ExportRequest(
                layer=layer.layer_name,
                output=str(table_path),
                columns=layer.columns,
                group_columns=layer.group_columns,
                statistics_columns=layer.statistics_columns,
                order_columns=layer.order_columns,
                include_area=layer.include_area,
                area_unit=definition.area_unit,
                distance_target=definition.search_layer if layer.include_near_fields else None,
                radius=definition.radius if layer.include_radius else NO_RADIUS,
            )
            rows = export_selection_to_csv(ctx, request)
            if rows < 0:
                return LayerOutcome(name=layer.name, success=False, rows=rows)
            outcome = LayerOutcome(name=layer.name, success=True, rows=rows, table_path=table_path)

            if layer.keep_layer:
                gis_name = strings.output_name(layer.gis_output_name or layer.name, rep_char)
                if not _keep_layer(ctx, layer, request, gis_name, buffer_name):
                    outcome.success = False
                else:
                    outcome.kept_as = gis_name

            if combined_path is not None and layer.combined_sites_columns:
                combined_request = request.model_copy(
                    update={
                        "output": str(combined_path),
                        "columns": layer.combined_sites_columns,
                        "group_columns": layer.combined_sites_group_columns,
                        "statistics_columns": layer.combined_sites_statistics_columns,
                        "order_columns": layer.combined_sites_order_columns,
                        "overwrite": False,
                        "include_headers": False,
                    }
                )
                if export_selection_to_csv(ctx, combined_request) < 0:
                    outcome.success = False

            if layer.macro_name:
                run_post_export_hook(Path(layer.macro_name), output_folder, table_name, log)

            log.write(f"Analysis complete for {layer.name}")
            return outcome
        finally:
            session.clear_selection(layer.layer_name)


def _keep_layer(
    ctx: ExportContext,
    layer: LayerDefinition,
    request: ExportRequest,
    gis_name: str,
    buffer_name: str,
) -> bool:
    """Save the selected features as a dataset of their own."""
    if layer.output_type == OutputType.COPY:
        return export_selection_to_feature_class(ctx, request.model_copy(update={"output": gis_name}))

    operation = "clip" if layer.output_type == OutputType.CLIP else "intersect"
    other = "clip_dataset" if operation == "clip" else "other_dataset"
    try:
        ctx.engine.run(
            operation, in_dataset=layer.layer_name, out_dataset=gis_name, **{other: buffer_name}
        )
    except EngineOperationError as e:
        ctx.fail(f"Cannot save {layer.name} to {gis_name}: {e.describe()}")
        return False
    ctx.log.write(f"{layer.name} saved to {gis_name}")
    return True
