#!/usr/bin/env python3
from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Optional

import pandas as pd
import streamlit as st

from placement_desk.columns import load_layout
from placement_desk.errors import BatchInsertError, PlacementDeskError
from placement_desk.exporter import default_filename, export_by_category, export_records
from placement_desk.filters import unique_values
from placement_desk.grid import GridEditor
from placement_desk.importer import ImportPipeline
from placement_desk.loader import ALL_FORMATS
from placement_desk.schema import ENTITIES, EntitySchema
from placement_desk.session import Role, Session
from placement_desk.settings import Settings
from placement_desk.stats import REQUIRED_FIELDS as STATS_FIELDS, placement_stats

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@st.cache_resource(show_spinner=False)
def load_settings() -> Settings:
    return Settings.from_env()


def ensure_state() -> None:
    st.session_state.setdefault("session", None)
    st.session_state.setdefault("editors", {})
    st.session_state.setdefault("pending_plan", None)
    st.session_state.setdefault("flash", [])


def flash(kind: str, message: str) -> None:
    st.session_state["flash"].append((kind, message))


def render_flash() -> None:
    for kind, message in st.session_state["flash"]:
        getattr(st, kind)(message)
    st.session_state["flash"] = []


def current_session() -> Optional[Session]:
    session = st.session_state.get("session")
    if session is not None and not session.active:
        return None
    return session


def sign_out() -> None:
    session = st.session_state.get("session")
    if session is not None:
        session.close()
    st.session_state["session"] = None
    st.session_state["editors"] = {}
    st.session_state["pending_plan"] = None


def render_sign_in(settings: Settings) -> None:
    st.subheader("Sign in")
    with st.form("sign_in"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Sign in", type="primary")
    if submitted:
        try:
            st.session_state["session"] = Session.sign_in(settings, email, password)
        except PlacementDeskError as exc:
            st.error(f"Sign-in failed: {exc}")
            return
        st.rerun()
    if settings.access_token:
        if st.button("Continue with configured token"):
            st.session_state["session"] = Session.from_settings(settings)
            st.rerun()


def editor_for(session: Session, schema: EntitySchema) -> GridEditor:
    editors = st.session_state["editors"]
    if schema.name not in editors:
        layout = load_layout(session.state, schema)
        editor = GridEditor(session.store, schema, layout, session=session, state=session.state)
        editor.refresh()
        editors[schema.name] = editor
    return editors[schema.name]


def view_frame(editor: GridEditor) -> pd.DataFrame:
    columns = editor.visible_columns
    rows = []
    for row in range(editor.row_count):
        rows.append([editor.text_at(row, col) for col in range(len(columns))])
    return pd.DataFrame(rows, columns=[column.label for column in columns])


# ── import ────────────────────────────────────────────────────────────────────

def build_pipeline(session: Session, schema: EntitySchema, editor: GridEditor, enrich: bool) -> ImportPipeline:
    settings = load_settings()
    return ImportPipeline(
        session.store,
        schema,
        editor.columns,
        batch_size=settings.batch_size,
        confirm_threshold=settings.confirm_threshold,
        enrich=enrich,
    )


def submit_plan(pipeline: ImportPipeline, plan, editor: GridEditor) -> None:
    try:
        result = pipeline.submit(plan)
    except BatchInsertError as exc:
        flash("error", f"{exc} ({exc.committed} row(s) were saved; re-import the rest.)")
        editor.refresh()
        return
    except PlacementDeskError as exc:
        flash("error", str(exc))
        return
    summary = result.to_summary()
    metrics = summary["run_summary"]["metrics"]
    flash("success", f"Imported {metrics['inserted']} record(s) in {metrics['batches']} batch(es).")
    for warning in summary["run_summary"]["warnings"]:
        flash("warning", warning)
    editor.refresh()
    editor.invalidate()


def render_import(session: Session, schema: EntitySchema, editor: GridEditor) -> None:
    with st.expander("Import", expanded=False):
        uploads = st.file_uploader(
            "Spreadsheets",
            type=[ext.lstrip(".") for ext in sorted(ALL_FORMATS)],
            accept_multiple_files=True,
            key=f"uploads_{schema.name}",
        )
        pasted = st.text_area("Or paste rows copied from a spreadsheet (with the header row)", key=f"paste_{schema.name}")
        enrich = st.checkbox("Fill missing details from master data", value=bool(schema.enrichment), disabled=not schema.enrichment)
        if st.button("Prepare import", disabled=not uploads and not pasted.strip()):
            pipeline = build_pipeline(session, schema, editor, enrich)
            try:
                if uploads:
                    plan = pipeline.prepare_files([(upload.name, upload.getvalue()) for upload in uploads])
                else:
                    plan = pipeline.prepare_clipboard(pasted)
            except PlacementDeskError as exc:
                st.error(str(exc))
                return
            if pipeline.needs_confirmation(plan):
                st.session_state["pending_plan"] = (schema.name, enrich, plan)
            else:
                submit_plan(pipeline, plan, editor)
                st.rerun()

        pending = st.session_state.get("pending_plan")
        if pending and pending[0] == schema.name:
            _, enrich_flag, plan = pending
            st.warning(f"Import {plan.count} record(s) from {', '.join(plan.sources)}?")
            confirm_col, cancel_col = st.columns(2)
            if confirm_col.button("Confirm import", type="primary"):
                st.session_state["pending_plan"] = None
                submit_plan(build_pipeline(session, schema, editor, enrich_flag), plan, editor)
                st.rerun()
            if cancel_col.button("Cancel"):
                st.session_state["pending_plan"] = None
                flash("info", "Import cancelled.")
                st.rerun()


# ── filters / columns ─────────────────────────────────────────────────────────

def render_filters(editor: GridEditor) -> None:
    search = st.text_input("Search all visible columns", value=editor.search, key=f"search_{editor.schema.name}")
    if search != editor.search:
        editor.set_search(search)

    with st.expander("Filters", expanded=bool(len(editor.filters))):
        columns = list(editor.columns)
        choice = st.selectbox("Column", options=[column.key for column in columns], format_func=lambda key: editor.columns.get(key).label)
        options = unique_values(editor.records, editor.columns, choice) if choice else []
        value = st.selectbox("Value contains", options=[""] + options, key=f"filter_value_{editor.schema.name}")
        custom = st.text_input("...or type text", key=f"filter_text_{editor.schema.name}")
        if st.button("Add filter") and (custom or value):
            editor.add_filter(choice, custom or value, editor.columns.get(choice).label)
            st.rerun()
        for criterion in list(editor.filters):
            if st.button(f"✕ {criterion.label}: {criterion.value}", key=f"chip_{criterion.id}"):
                editor.remove_filter(criterion.id)
                st.rerun()
        strict = st.checkbox("Only columns filled for every row", value=editor.strict_view)
        if strict != editor.strict_view:
            editor.set_strict_view(strict)
            st.rerun()


def render_columns(editor: GridEditor) -> None:
    with st.expander("Columns", expanded=False):
        for column in list(editor.columns):
            label_col, visible_col = st.columns([3, 1])
            label = label_col.text_input(column.key, value=column.label, key=f"label_{editor.schema.name}_{column.key}")
            visible = visible_col.checkbox("Visible", value=column.visible, key=f"visible_{editor.schema.name}_{column.key}")
            try:
                if label != column.label:
                    editor.rename_column(column.key, label)
                if visible != column.visible:
                    (editor.show_column if visible else editor.hide_column)(column.key)
            except PlacementDeskError as exc:
                st.error(str(exc))
        new_label = st.text_input("New column", key=f"new_column_{editor.schema.name}")
        pasted = st.text_area("Values for the new column, one per line (optional)", key=f"new_column_values_{editor.schema.name}")
        if st.button("Add column") and new_label.strip():
            try:
                if pasted.strip():
                    staged = editor.paste_as_new_column(new_label, pasted)
                    flash("info", f"Staged {staged} value(s) for '{new_label}'. Save Changes to keep them.")
                else:
                    editor.add_column(new_label)
            except PlacementDeskError as exc:
                st.error(str(exc))
                return
            st.rerun()


# ── grid ──────────────────────────────────────────────────────────────────────

def stage_frame_edits(editor: GridEditor, before: pd.DataFrame, after: pd.DataFrame) -> int:
    staged = 0
    for row in range(min(len(before), len(after))):
        for col in range(len(before.columns)):
            old = before.iat[row, col]
            new = after.iat[row, col]
            new = "" if new is None or (isinstance(new, float) and pd.isna(new)) else str(new)
            if new != old:
                editor.stage(row, col, new)
                staged += 1
    return staged


def render_cell_tools(editor: GridEditor) -> None:
    if not editor.row_count or not editor.col_count:
        return
    with st.expander("Cell tools", expanded=False):
        labels = [column.label for column in editor.visible_columns]
        left, right = st.columns(2)
        row = left.number_input("Row", min_value=1, max_value=editor.row_count, value=1) - 1
        col = labels.index(right.selectbox("Column", options=labels))
        to_row = left.number_input("To row", min_value=1, max_value=editor.row_count, value=row + 1) - 1
        to_col = labels.index(right.selectbox("To column", options=labels, index=col))
        pasted = st.text_area("Paste at cell (tab-separated)", key=f"cell_paste_{editor.schema.name}")
        paste_col, fill_col, clear_col, copy_col = st.columns(4)
        try:
            if paste_col.button("Paste") and pasted:
                editor.select(row, col)
                flash("info", f"Staged {editor.paste(pasted)} cell(s).")
                st.rerun()
            if fill_col.button("Fill"):
                editor.select(row, col)
                editor.start_drag()
                editor.drag_to(to_row)
                flash("info", f"Filled {editor.release()} row(s).")
                st.rerun()
            if clear_col.button("Clear"):
                editor.select(row, col)
                editor.extend(to_row, to_col)
                flash("info", f"Cleared {editor.delete()} cell(s).")
                st.rerun()
            if copy_col.button("Copy"):
                editor.select(row, col)
                editor.extend(to_row, to_col)
                st.code(editor.copy())
        except PlacementDeskError as exc:
            st.error(str(exc))


def record_label(editor: GridEditor, row: int) -> str:
    record = editor.record_at(row)
    identity = " / ".join(str(record.values.get(key) or "?") for key in editor.schema.identity)
    return f"{row + 1}. {identity}"


def render_record_form(editor: GridEditor) -> None:
    if not editor.row_count or not editor.col_count:
        return
    with st.expander("Edit or delete a record", expanded=False):
        row = st.selectbox(
            "Record",
            options=list(range(editor.row_count)),
            format_func=lambda index: record_label(editor, index),
            key=f"record_pick_{editor.schema.name}",
        )
        record = editor.record_at(row)
        columns = editor.visible_columns
        with st.form(f"record_form_{editor.schema.name}_{record.id}"):
            entered = {
                column.key: st.text_input(column.label, value=editor.text_at(row, col), key=f"record_{record.id}_{column.key}")
                for col, column in enumerate(columns)
            }
            submitted = st.form_submit_button("Update record", type="primary")
        if submitted:
            changes = {
                column.key: entered[column.key]
                for col, column in enumerate(columns)
                if entered[column.key] != editor.text_at(row, col)
            }
            try:
                if changes:
                    editor.update_record(record.id, changes)
            except PlacementDeskError as exc:
                st.error(f"Update failed: {exc}")
            else:
                flash("success", f"Updated {len(changes)} field(s)." if changes else "Nothing changed.")
                st.rerun()

        confirm = st.checkbox("I want to delete this record", key=f"record_delete_ok_{editor.schema.name}_{record.id}")
        if st.button("Delete record", disabled=not confirm, key=f"record_delete_{editor.schema.name}"):
            try:
                editor.delete_record(record.id)
            except PlacementDeskError as exc:
                st.error(f"Delete failed: {exc}")
            else:
                flash("success", "Record deleted.")
                st.rerun()


def render_grid(session: Session, editor: GridEditor) -> None:
    frame = view_frame(editor)
    st.caption(f"{editor.row_count} of {len(editor.records)} record(s)  •  {len(editor.buffer)} unsaved change(s)")
    edited = st.data_editor(frame, key=f"grid_{editor.schema.name}_{len(editor.buffer)}", width="stretch", num_rows="fixed")
    if stage_frame_edits(editor, frame, edited):
        st.rerun()
    render_cell_tools(editor)
    render_record_form(editor)

    save_col, revert_col, refresh_col, add_col, delete_col = st.columns(5)
    if save_col.button("Save Changes", type="primary", disabled=not editor.buffer):
        try:
            summary = editor.save_changes()
        except PlacementDeskError as exc:
            st.error(f"Save failed; your changes are still pending. {exc}")
        else:
            flash("success", f"Saved {summary['run_summary']['metrics']['cells']} change(s).")
            st.rerun()
    if revert_col.button("Revert", disabled=not editor.buffer):
        editor.revert()
        st.rerun()
    try:
        if refresh_col.button("Refresh"):
            editor.refresh()
            st.rerun()
        if add_col.button("Add record"):
            editor.add_record()
            flash("success", "Record added.")
            st.rerun()
        if delete_col.button(f"Delete all {editor.row_count} shown", disabled=not editor.row_count):
            st.session_state[f"confirm_delete_{editor.schema.name}"] = True
        if st.session_state.get(f"confirm_delete_{editor.schema.name}"):
            st.warning(f"Delete {editor.row_count} record(s) permanently?")
            if st.button("Yes, delete"):
                st.session_state[f"confirm_delete_{editor.schema.name}"] = False
                flash("success", f"Deleted {editor.delete_all_visible()} record(s).")
                st.rerun()
    except PlacementDeskError as exc:
        st.error(str(exc))


def render_stats(editor: GridEditor) -> None:
    if not all(key in editor.schema.keys for key in STATS_FIELDS):
        return
    with st.expander("Statistics", expanded=False):
        summary = placement_stats(editor.view, editor.schema)
        totals = summary["totals"]
        appeared, selected, ppo, companies = st.columns(4)
        appeared.metric("Appeared", totals["appeared"])
        selected.metric("Selected", totals["selected"], f"{totals['placement_rate']}%", delta_color="off")
        ppo.metric("PPO / Internship", totals["ppo"])
        companies.metric("Companies", totals["companies"])
        if summary["departments"]:
            st.dataframe(
                pd.DataFrame(summary["departments"]).set_index("department").drop(columns=["years"]),
                width="stretch",
            )
        if totals["years"]:
            st.dataframe(pd.DataFrame(totals["years"]).set_index("year"), width="stretch")


def render_export(editor: GridEditor) -> None:
    with st.expander("Export", expanded=False):
        by_category = st.checkbox("One sheet per category", disabled=not editor.schema.category_field)
        if st.button("Build export"):
            name = default_filename(by_category)
            try:
                with tempfile.TemporaryDirectory() as tmpdir:
                    path = Path(tmpdir) / name
                    if by_category:
                        export_by_category(editor.view, editor.columns, path)
                    else:
                        export_records(editor.view, editor.columns, path)
                    data = path.read_bytes()
            except PlacementDeskError as exc:
                st.error(str(exc))
                return
            st.download_button("Download", data=data, file_name=name, mime=XLSX_MIME, width="stretch")


def main() -> None:
    st.set_page_config(page_title="placement-desk", layout="wide")
    ensure_state()
    settings = load_settings()

    st.title("placement-desk")
    render_flash()

    try:
        settings.require_remote()
    except PlacementDeskError as exc:
        st.error(f"{exc}. Set the PLACEMENT_DESK_* environment variables and restart.")
        return

    session = current_session()
    if session is None:
        render_sign_in(settings)
        return

    with st.sidebar:
        role = session.role.value.replace("_", " ").title() if isinstance(session.role, Role) else "Signed in"
        st.caption(role)
        entity = st.radio("Records", options=list(ENTITIES), format_func=lambda name: ENTITIES[name].title)
        if st.button("Sign out"):
            sign_out()
            st.rerun()

    schema = ENTITIES[entity]
    try:
        editor = editor_for(session, schema)
    except PlacementDeskError as exc:
        st.error(str(exc))
        return

    render_import(session, schema, editor)
    render_filters(editor)
    render_columns(editor)
    render_grid(session, editor)
    render_stats(editor)
    render_export(editor)


if __name__ == "__main__":
    main()
