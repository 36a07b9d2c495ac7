import logging

import streamlit as st

from family_directory import (
    DIMENSION_ORDER,
    FIELD_TITLES,
    Dimension,
    group_heading_html,
    group_students,
    groups_to_frame,
    student_card_html,
)
from roster.config import load_settings
from roster.ingestion.loader import LoadError, build_directory, read_csv_export
from roster.session import DirectorySession

settings = load_settings()
logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))

# Page config
st.set_page_config(
    page_title="Family Directory",
    page_icon="📒",
    layout="wide",
    initial_sidebar_state="expanded"
)

# Custom CSS
st.markdown("""
<style>
    :root {
        --primary-color: #1e3a8a;
        --text-dark: #1f2937;
        --text-light: #6b7280;
        --border-color: #e5e7eb;
    }

    #MainMenu {visibility: hidden;}
    footer {visibility: hidden;}

    h1 {
        color: var(--primary-color);
        font-weight: 700;
        letter-spacing: -0.02em;
    }

    .group-card {
        background-color: white;
        border: 1px solid var(--border-color);
        border-left: 4px solid var(--primary-color);
        border-radius: 0.5rem;
        padding: 1rem 1.5rem;
        margin-bottom: 1rem;
    }

    .parent-info {
        color: var(--text-light);
        font-size: 0.9rem;
        margin-left: 1rem;
    }
</style>
""", unsafe_allow_html=True)

# Session state: one DirectorySession per browser session
if "directory_session" not in st.session_state:
    st.session_state["directory_session"] = DirectorySession(settings)
session = st.session_state["directory_session"]

st.title("Family Directory")

# Sidebar
with st.sidebar:
    st.markdown("## Access")
    with st.form("access_form"):
        access_code = st.text_input("Access code", type="password")
        submitted = st.form_submit_button(
            "Open Directory",
            type="primary",
            use_container_width=True,
        )

    st.markdown("## Grouping")
    dimension = st.radio(
        "Group students by",
        options=list(DIMENSION_ORDER),
        format_func=lambda d: FIELD_TITLES[d],
    )

    with st.expander("Load a CSV export instead"):
        uploaded_file = st.file_uploader("Entries export", type=["csv"])

if submitted:
    with st.spinner("Loading directory..."):
        session.submit(access_code)

if uploaded_file is not None and st.session_state.get("uploaded_name") != uploaded_file.name:
    try:
        session.replace(build_directory(read_csv_export(uploaded_file)))
        st.session_state["uploaded_name"] = uploaded_file.name
    except LoadError as e:
        session.last_error = e

if session.last_error is not None:
    st.error(f"❌ {session.last_error.reason}")
    with st.expander("See error details"):
        st.code(str(session.last_error))

directory = session.current
if directory is None:
    st.info("👈 Enter your access code to view the directory")
    st.stop()

report = directory.report
col1, col2, col3 = st.columns(3)
with col1:
    st.metric("Students", f"{report.merged_students:,}")
with col2:
    st.metric("Submissions", f"{report.row_count:,}")
with col3:
    st.metric("Superseded Records", f"{report.superseded_records:,}")

if report.flags:
    with st.expander("Load report", expanded=False):
        st.code(report.as_text())

dimension = Dimension(dimension)
groups = group_students(directory.students, dimension)

tab_cards, tab_table = st.tabs(["📒 Directory", "📋 Table"])

with tab_cards:
    for g in groups:
        st.markdown(group_heading_html(g.label), unsafe_allow_html=True)
        for s in g.members:
            st.markdown(student_card_html(s, dimension), unsafe_allow_html=True)

with tab_table:
    entry_url = settings.entry_url if directory.admin else None
    frame = groups_to_frame(groups, dimension, entry_url=entry_url, form_id=directory.form_id)
    column_config = {"Entry": st.column_config.LinkColumn("Entry")} if entry_url else None
    st.dataframe(frame, use_container_width=True, hide_index=True, column_config=column_config)
