import uuid

import streamlit as st
from websocket import WebSocketException

from ws_stream import fetch_health, ws_token_stream


def _new_session_id() -> str:
    return f"streamlit-{uuid.uuid4().hex[:8]}"


def _reset_conversation() -> None:
    st.session_state["messages"] = []
    st.session_state["session_id"] = _new_session_id()


def render_backend_status(ws_url: str) -> None:
    health = fetch_health(ws_url)
    if health is None:
        st.error("Backend unreachable")
        return
    if health.get("mcp_connected"):
        st.success(f"Polymarket MCP connected ({health.get('tools_available', 0)} tools)")
    elif health.get("connection_state") == "awaiting-authorization":
        st.warning("Waiting for OAuth: open the authorization link printed in the backend log.")
    else:
        st.error(f"MCP {health.get('connection_state', 'disconnected')}")


st.set_page_config(page_title="Polymarket Chat", page_icon="📊", layout="centered")
st.title("📊 Polymarket Chat")
st.caption("Ask about prediction markets, events, tags and recent trades.")

st.session_state.setdefault("messages", [])
st.session_state.setdefault("session_id", _new_session_id())

with st.sidebar:
    st.subheader("Backend")
    ws_url = st.text_input("WebSocket URL", value="ws://localhost:8090/ws/chat")
    if st.button("Check status"):
        render_backend_status(ws_url)
    st.markdown("---")
    st.text_input("Session ID", key="session_id")
    st.button("New conversation", on_click=_reset_conversation)

for m in st.session_state["messages"]:
    with st.chat_message(m["role"]):
        st.markdown(m["content"])

prompt = st.chat_input("e.g. What are the trending markets on the Fed?")
if prompt:
    st.session_state["messages"].append({"role": "user", "content": prompt})
    with st.chat_message("user"):
        st.markdown(prompt)

    with st.chat_message("assistant"):
        try:
            answer = st.write_stream(ws_token_stream(ws_url, st.session_state["session_id"], prompt))
        except (RuntimeError, OSError, WebSocketException) as e:
            answer = f"Error: {e}"
            st.error(answer)

    st.session_state["messages"].append({"role": "assistant", "content": answer})
