import streamlit as st

from connect_core.offline.poll_loop import ViewState

# Central registry for session-state keys used across the app.
SESSION_DEFAULTS = {
    "session_user": None,
    "users": [],
    "groups": [],
    "messages": [],
    "active_user_id": None,
    "active_group_id": None,
    "remote_reachable": False,
    "refreshed_at": None,
    "debug_mode": False,
}

# Keys owned by the poll loop; replaced together on every tick
VIEW_KEYS = (
    "session_user",
    "users",
    "groups",
    "messages",
    "active_user_id",
    "active_group_id",
    "remote_reachable",
    "refreshed_at",
)


def init_state():
    """Initialize session state with defaults."""
    for k, v in SESSION_DEFAULTS.items():
        if k not in st.session_state:
            st.session_state[k] = v


def apply_view(view: ViewState):
    """Copy a poll snapshot into session state, replacing the previous one."""
    for key in VIEW_KEYS:
        st.session_state[key] = getattr(view, key)


def clear_session():
    """Reset every key to its default (used on logout)."""
    for key in list(st.session_state.keys()):
        del st.session_state[key]
    init_state()
