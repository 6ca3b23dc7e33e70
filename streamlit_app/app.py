import os

import streamlit as st

from rag_chat.client.api_client import ApiError, ChatApiClient
from rag_chat.client.streaming import StreamingReply

# =========================================================
# CONFIG
# =========================================================
API_BASE = os.getenv("API_BASE", "http://localhost:3001")

st.set_page_config(
    page_title="Knowledge Base Chat",
    layout="wide",
)

# =========================================================
# STYLES
# =========================================================
st.markdown(
    """
    <style>
    .chat-message { font-size: 16px; line-height: 1.6; }
    .stChatMessage { padding: 12px; border-radius: 8px; }
    .stChatMessage.user { background-color: #f0f2f6; }
    .stChatMessage.assistant { background-color: #ffffff; }
    </style>
    """,
    unsafe_allow_html=True,
)

# =========================================================
# STATE MANAGEMENT
# =========================================================
if "client" not in st.session_state:
    st.session_state.client = ChatApiClient(API_BASE)
if "user" not in st.session_state:
    st.session_state.user = None
if "conversation_id" not in st.session_state:
    st.session_state.conversation_id = None
if "conversation" not in st.session_state:
    st.session_state.conversation = None
if "conversations" not in st.session_state:
    st.session_state.conversations = []
if "error" not in st.session_state:
    st.session_state.error = None

client: ChatApiClient = st.session_state.client


def api(fn, *args, **kwargs):
    """Call the client; a failure becomes the single error shown on the page."""
    try:
        return fn(*args, **kwargs)
    except ApiError as e:
        st.session_state.error = e.message
        return None


# =========================================================
# LOAD DATA
# =========================================================
def refresh_conversations():
    data = api(client.get_conversations)
    st.session_state.conversations = data or []


def open_conversation(conversation_id):
    st.session_state.conversation_id = conversation_id
    st.session_state.conversation = (
        api(client.get_conversation, conversation_id) if conversation_id else None
    )


def render_sources(sources):
    if not sources:
        return
    with st.expander(f"Sources ({len(sources)})"):
        for i, s in enumerate(sources, start=1):
            st.markdown(f"**[{i}]** score {s.get('score', 0):.2f}")
            st.caption(s.get("content", "")[:300])


# =========================================================
# SIGN IN
# =========================================================
if st.session_state.user is None:
    st.title("🔐 Sign in")
    mode = st.radio("Account", ["Sign in", "Sign up"], horizontal=True)
    with st.form("auth"):
        email = st.text_input("Email")
        password = st.text_input("Password", type="password")
        name = st.text_input("Name") if mode == "Sign up" else None
        submitted = st.form_submit_button(mode)
    if submitted:
        if mode == "Sign up":
            session = api(client.sign_up, email, password, name or None)
        else:
            session = api(client.sign_in, email, password)
        if session:
            st.session_state.user = session["user"]
            st.session_state.error = None
            refresh_conversations()
            st.rerun()
    if st.session_state.error:
        st.error(st.session_state.error)
    st.stop()

refresh_conversations()

# =========================================================
# SIDEBAR
# =========================================================
st.sidebar.title("💬 Conversations")
st.sidebar.caption(st.session_state.user["email"])

if st.sidebar.button("➕ New Chat", use_container_width=True):
    conv = api(client.create_conversation)
    if conv:
        open_conversation(conv["id"])
        refresh_conversations()
        st.rerun()

for c in st.session_state.conversations:
    last = c["messages"][0]["content"][:40] if c["messages"] else "No messages yet"
    if st.sidebar.button(f"{c['title']} • {last}", key=f"conv-{c['id']}"):
        open_conversation(c["id"])
        st.rerun()

if st.session_state.conversation_id:
    if st.sidebar.button("🗑️ Delete Conversation", use_container_width=True):
        api(client.delete_conversation, st.session_state.conversation_id)
        open_conversation(None)
        refresh_conversations()
        st.rerun()

st.sidebar.divider()
st.sidebar.subheader("📚 Documents")

documents = api(client.get_documents) or []
for d in documents:
    col_name, col_del = st.sidebar.columns([4, 1])
    col_name.markdown(f"• {d['title']} ({d['chunkCount']} chunks)")
    if col_del.button("✕", key=f"doc-{d['id']}"):
        api(client.delete_document, d["id"])
        st.rerun()
if not documents:
    st.sidebar.caption("No documents uploaded")

uploads = st.sidebar.file_uploader(
    "Upload documents",
    accept_multiple_files=True,
    type=["txt", "md", "markdown", "pdf", "json", "csv"],
)
if uploads and st.sidebar.button("Process Files"):
    with st.spinner("Uploading documents..."):
        for f in uploads:
            api(client.upload_document, f.name, f.getvalue(), f.type or "text/plain")
    st.sidebar.success("Uploaded, embeddings are being generated")
    st.rerun()

conversation = st.session_state.conversation
if conversation:
    st.sidebar.divider()
    st.sidebar.subheader("⚙️ RAG Settings")
    settings = conversation.get("settings") or {}
    with st.sidebar.form("settings"):
        top_k = st.slider("Top K", 1, 20, int(settings.get("topK", 5)))
        threshold = st.slider("Similarity threshold", 0.0, 1.0, float(settings.get("threshold", 0.7)))
        titles = {d["id"]: d["title"] for d in documents}
        selected = st.multiselect(
            "Only search these documents",
            options=list(titles),
            default=[i for i in settings.get("documentIds") or [] if i in titles],
            format_func=lambda i: titles[i],
        )
        if st.form_submit_button("Save"):
            new_settings = {"topK": top_k, "threshold": threshold}
            if selected:
                new_settings["documentIds"] = selected
            api(client.update_settings, conversation["id"], new_settings)
            open_conversation(conversation["id"])
            st.rerun()

if st.sidebar.button("Sign out", use_container_width=True):
    api(client.sign_out)
    st.session_state.user = None
    open_conversation(None)
    st.rerun()

# =========================================================
# MAIN CHAT
# =========================================================
st.title("📄 Knowledge Base Chat")

if st.session_state.error:
    st.error(st.session_state.error)
    st.session_state.error = None

if not conversation:
    st.info("👈 Create or select a conversation to start chatting.")
    st.stop()

for m in conversation["messages"]:
    with st.chat_message(m["role"]):
        st.markdown(m["content"])
        render_sources(m.get("sources"))

query = st.chat_input("Ask about your documents...")

if query:
    with st.chat_message("user"):
        st.markdown(query)

    reply = StreamingReply()
    reply.start()
    with st.chat_message("assistant"):
        bubble = st.empty()
        bubble.markdown("_Thinking..._")
        try:
            for event in client.stream_message(conversation["id"], query):
                reply.apply(event)
                if reply.content:
                    bubble.markdown(reply.content + "▌")
        except ApiError as e:
            reply.fail(e.message)
        reply.finish()

        if reply.state == "error":
            bubble.empty()
            st.session_state.error = reply.error
        else:
            bubble.markdown(reply.content)
            render_sources(reply.sources)

    open_conversation(conversation["id"])
    refresh_conversations()
    st.rerun()
