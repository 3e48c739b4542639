"""
Connect - Streamlit client.

Run with:
    streamlit run app.py

The chat view refreshes every poll interval through a Streamlit fragment
that ticks the PollLoop; each tick replaces the view state wholesale.
"""
from __future__ import annotations
from datetime import datetime

import streamlit as st

from connect_core.config import SETTING_API_URL, load_client_config
from connect_core.errors.handlers import ErrorContext, error_boundary, report_remote_failure
from connect_core.logging import setup_logging
from connect_core.models import Group, Message, User, is_local_id
from connect_core.offline import LocalDatabase, PollLoop, SyncGateway
from connect_core.services import ChatService, attachment_payload
from connect_core.state.session import apply_view, clear_session, init_state

# ============================================================================
# PAGE CONFIGURATION
# ============================================================================
st.set_page_config(
    page_title="Connect",
    page_icon="💬",
    layout="wide",
)


@st.cache_resource
def _init_logging() -> bool:
    setup_logging()
    return True


@st.cache_resource
def get_gateway() -> SyncGateway:
    """One gateway (adapter, connectivity state, SQLite store) per server process."""
    config = load_client_config()
    local_db = LocalDatabase(config.local_db_path).initialize()
    persisted_url = local_db.get_setting(SETTING_API_URL)
    if persisted_url:
        config = load_client_config(persisted_url=persisted_url, local_db_path=config.local_db_path)
    return SyncGateway(config, local_db)


def get_chat() -> ChatService:
    if "chat_service" not in st.session_state:
        chat = ChatService(get_gateway())
        chat.restore_session()
        st.session_state["chat_service"] = chat
    return st.session_state["chat_service"]


def get_poll_loop() -> PollLoop:
    if "poll_loop" not in st.session_state:
        gateway = get_gateway()
        st.session_state["poll_loop"] = PollLoop(
            gateway, interval_seconds=gateway.config.poll_interval_seconds
        )
    return st.session_state["poll_loop"]


# ============================================================================
# ONBOARDING
# ============================================================================

def render_onboarding(chat: ChatService) -> None:
    st.title("💬 Connect")
    st.caption("Sign in with a username and email. Works offline too.")

    with st.form("login_form"):
        username = st.text_input("Username", max_chars=50)
        email = st.text_input("Email")
        submitted = st.form_submit_button("Continue", type="primary")

    if submitted:
        result = chat.login(username, email)
        if result:
            if result.metadata and result.metadata.get("offline"):
                st.info("Server unreachable. Signed in with a local account.")
            st.rerun()
        else:
            st.error(result.error)


# ============================================================================
# SIDEBAR
# ============================================================================

def render_connection_badge(gateway: SyncGateway) -> None:
    status = gateway.connection_status()
    if status["is_online"]:
        st.success("🟢 Online")
    elif status["attempted"]:
        st.warning(f"🟠 Offline ({status['failures']} failed calls)")
    else:
        st.info("⚪ Connecting...")
    if status["pending_sync"]:
        st.caption(f"{status['pending_sync']} message(s) waiting to be delivered")


@error_boundary(error_message="Could not render sidebar")
def render_sidebar(chat: ChatService, gateway: SyncGateway, loop: PollLoop) -> None:
    user = chat.session_user
    with st.sidebar:
        st.image(user.avatar, width=64)
        st.markdown(f"**{user.username}**  \n{user.status}")
        if user.is_banned:
            st.error("Your account is banned. You can read but not send.")
        render_connection_badge(gateway)

        with st.expander("Profile"):
            with st.form("profile_form"):
                username = st.text_input("Username", value=user.username, max_chars=50)
                status = st.text_input("Status", value=user.status, max_chars=200)
                if st.form_submit_button("Save"):
                    result = chat.update_profile(username=username, status=status)
                    if result:
                        loop.set_session_user(result.data)
                        st.success("Profile updated")
                    else:
                        st.error(result.error)

        with st.expander("New group"):
            render_group_form(chat)

        with st.expander("Server"):
            url = st.text_input("API base URL", value=gateway.config.base_url)
            if st.button("Use this server") and url != gateway.config.base_url:
                gateway.set_setting(SETTING_API_URL, url)
                get_gateway.clear()
                st.session_state.pop("chat_service", None)
                st.session_state.pop("poll_loop", None)
                st.rerun()

        if user.is_admin:
            with st.expander("Admin"):
                render_admin_panel(gateway, user)

        if st.button("Log out"):
            chat.logout()
            loop.set_session_user(None)
            clear_session()
            st.rerun()


def render_group_form(chat: ChatService) -> None:
    candidates = [u for u in st.session_state.get("users", []) if not is_local_id(u.id)]
    labels = {u.id: u.username for u in candidates}

    with st.form("group_form", clear_on_submit=True):
        name = st.text_input("Group name")
        members = st.multiselect(
            "Members (pick at least 2)",
            options=list(labels),
            format_func=lambda uid: labels.get(uid, uid),
        )
        if st.form_submit_button("Create group"):
            result = chat.create_group(name, members)
            if result:
                st.success(f"Created {result.data.name}")
            else:
                st.error(result.error)


def render_admin_panel(gateway: SyncGateway, admin: User) -> None:
    users = [u for u in st.session_state.get("users", []) if not u.is_admin]
    labels = {u.id: f"{u.username} ({u.email}){' 🚫' if u.is_banned else ''}" for u in users}

    target = st.selectbox("User", options=list(labels), format_func=lambda uid: labels[uid])
    col1, col2 = st.columns(2)
    if target and col1.button("Ban"):
        if not gateway.ban_user(target, admin.id):
            report_remote_failure(gateway.last_failure, "Ban")
    if target and col2.button("Delete forever"):
        if not gateway.permanent_delete_user(target, admin.id):
            report_remote_failure(gateway.last_failure, "Delete")

    st.divider()
    groups = gateway.list_all_groups_for_admin(admin.id)
    st.caption(f"{len(groups)} group(s) on the server")
    for group in groups:
        if st.button(f"Delete group {group.name}", key=f"admin_del_{group.id}"):
            if not gateway.delete_group(group.id, admin.id):
                report_remote_failure(gateway.last_failure, "Delete group")

    st.divider()
    if st.checkbox("I understand this deletes all non-admin data"):
        if st.button("Clean up all data", type="primary"):
            with ErrorContext("Cleaning up all data"):
                counts = gateway.cleanup_all_data(admin.id)
                if counts is None:
                    report_remote_failure(gateway.last_failure, "Cleanup")
                else:
                    st.success(
                        f"Deleted {counts['usersDeleted']} users, "
                        f"{counts['messagesDeleted']} messages, {counts['groupsDeleted']} groups"
                    )

    with st.expander("Local mirror"):
        st.dataframe(gateway.users_dataframe(), use_container_width=True)


# ============================================================================
# LIVE VIEW (refreshed by the poll loop)
# ============================================================================

def show_failure(chat: ChatService, result, action: str) -> None:
    """Server rejections carry the server's reason; local rule failures their own."""
    if result.error_code == "REMOTE_001":
        report_remote_failure(chat.gateway.last_failure, action)
    else:
        st.error(result.error)


def render_message_actions(chat: ChatService, message: Message) -> None:
    with st.popover("⋯", help="Edit or delete"):
        if message.type == "text":
            with st.form(f"edit_{message.id}"):
                text = st.text_area("Edit message", value=message.text or "", max_chars=5000)
                if st.form_submit_button("Save"):
                    result = chat.edit_message(message, text)
                    if result:
                        st.rerun(scope="fragment")
                    else:
                        show_failure(chat, result, "Edit")
        if st.button("Delete message", key=f"delete_{message.id}", type="primary"):
            result = chat.delete_message(message)
            if result:
                st.rerun(scope="fragment")
            else:
                show_failure(chat, result, "Delete")


def render_message(chat: ChatService, message: Message, me: User, names: dict) -> None:
    mine = message.sender_id == me.id
    with st.chat_message("user" if mine else "assistant"):
        if not mine and message.group_id:
            st.caption(names.get(message.sender_id, "Unknown"))
        if message.type == "image":
            st.image(message.image_url)
        elif message.type == "audio":
            st.audio(message.audio_url)
        elif message.type == "file":
            st.markdown(f"📎 [{message.file_name or 'file'}]({message.file_url})")
        else:
            st.write(message.text)

        sent_at = datetime.fromtimestamp(message.timestamp / 1000).strftime("%H:%M")
        tick = "🕓" if is_local_id(message.id) else {"sent": "✓", "delivered": "✓✓", "read": "✓✓ read"}.get(message.status, "")
        st.caption(f"{sent_at} {tick if mine else ''}")

        if mine and message.id and not is_local_id(message.id) and not me.is_banned:
            render_message_actions(chat, message)


def render_group_info(chat: ChatService, group: Group, names: dict) -> None:
    me = chat.session_user
    with st.expander("Group info"):
        for member_id in group.member_ids:
            badge = " (admin)" if member_id == group.admin_id else ""
            st.markdown(f"- {names.get(member_id, 'You' if member_id == me.id else member_id)}{badge}")

        if me.id == group.admin_id:
            outsiders = [u for u in st.session_state.get("users", [])
                         if not group.is_member(u.id) and not is_local_id(u.id) and not u.is_banned]
            if outsiders:
                labels = {u.id: u.username for u in outsiders}
                new_member = st.selectbox("Add member", options=list(labels),
                                          format_func=lambda uid: labels[uid], key=f"add_{group.id}")
                if st.button("Add", key=f"add_btn_{group.id}"):
                    result = chat.add_group_member(group, new_member)
                    if result:
                        st.rerun(scope="fragment")
                    else:
                        show_failure(chat, result, "Add member")

            removable = [m for m in group.member_ids if m != group.admin_id]
            if removable:
                member = st.selectbox("Remove member", options=removable,
                                      format_func=lambda uid: names.get(uid, uid), key=f"remove_{group.id}")
                if st.button("Remove", key=f"remove_btn_{group.id}"):
                    result = chat.remove_group_member(group, member)
                    if result:
                        st.rerun(scope="fragment")
                    else:
                        show_failure(chat, result, "Remove member")

        if me.id == group.admin_id or me.is_admin:
            if st.button("Delete group", key=f"delete_group_{group.id}", type="primary"):
                result = chat.delete_group(group)
                if result:
                    st.rerun(scope="fragment")
                else:
                    show_failure(chat, result, "Delete group")


def render_conversation_list(loop: PollLoop) -> None:
    st.subheader("Chats")
    for user in st.session_state.get("users", []):
        if user.is_banned:
            continue
        if st.button(f"👤 {user.username}", key=f"open_user_{user.id}", use_container_width=True):
            loop.open_direct(user.id)
            st.rerun(scope="fragment")

    group: Group
    for group in st.session_state.get("groups", []):
        if st.button(f"👥 {group.name}", key=f"open_group_{group.id}", use_container_width=True):
            loop.open_group(group.id)
            st.rerun(scope="fragment")


def render_chat_pane(chat: ChatService) -> None:
    me = chat.session_user
    users = st.session_state.get("users", [])
    names = {u.id: u.username for u in users}

    if st.session_state.get("active_group_id"):
        group = next((g for g in st.session_state.get("groups", []) if g.id == st.session_state["active_group_id"]), None)
        st.subheader(f"👥 {group.name}" if group else "Group")
        if group is not None:
            render_group_info(chat, group, names)
    elif st.session_state.get("active_user_id"):
        st.subheader(f"👤 {names.get(st.session_state['active_user_id'], 'Chat')}")
    else:
        st.info("Pick a chat on the left.")
        return

    messages = st.session_state.get("messages", [])
    for message in messages:
        render_message(chat, message, me, names)
    chat.mark_read(messages)


@st.fragment(run_every=2)
def live_view(chat: ChatService, loop: PollLoop) -> None:
    view = loop.tick()
    if view is not None:
        apply_view(view)
        if view.session_user is not None:
            chat.adopt_session_user(view.session_user)

    left, right = st.columns([1, 3])
    with left:
        render_conversation_list(loop)
    with right:
        render_chat_pane(chat)


def handle_composer(chat: ChatService, loop: PollLoop) -> None:
    view = loop.view
    if not view.active_conversation or chat.session_user.is_banned:
        return

    target = {"receiver_id": view.active_user_id, "group_id": view.active_group_id}

    with st.popover("📎 Attach"):
        upload = st.file_uploader("Image, audio or any file", key="attachment")
        if upload is not None and st.button("Send attachment"):
            payload = attachment_payload(upload.name, upload.type, upload.getvalue())
            report_send(chat, chat.send(**target, **payload))

    prompt = st.chat_input("Type a message")
    if prompt:
        report_send(chat, chat.send(**target, text=prompt))


def report_send(chat: ChatService, result) -> None:
    if not result:
        show_failure(chat, result, "Send")
    elif result.metadata and result.metadata.get("queued"):
        st.toast("Offline: message saved locally")


# ============================================================================
# MAIN
# ============================================================================

def main() -> None:
    _init_logging()
    init_state()

    gateway = get_gateway()
    chat = get_chat()
    loop = get_poll_loop()

    if chat.session_user is None:
        render_onboarding(chat)
        return

    if loop.session_user is None or loop.session_user.id != chat.session_user.id:
        loop.set_session_user(chat.session_user)

    render_sidebar(chat, gateway, loop)
    handle_composer(chat, loop)
    live_view(chat, loop)


main()
