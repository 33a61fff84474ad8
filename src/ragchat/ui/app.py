"""Gradio-based chat interface for ragchat."""

from __future__ import annotations

from pathlib import Path

import gradio as gr

from ragchat.ui.client import DEFAULT_API_URL, APIError, ChatClient, Conversation


def _upload_path(file: object) -> Path | None:
    if isinstance(file, (str, Path)):
        return Path(file)
    if hasattr(file, "name"):
        return Path(getattr(file, "name"))
    return None


def _format_status(status: dict) -> str:
    lines = [
        f"Vector store: {status.get('vector_store')}",
        f"Collection: {status.get('collection')}",
    ]
    if status.get("documents") is not None:
        lines.append(f"Indexed chunks: {status['documents']}")
    if not status.get("rag_available"):
        lines.append("Answers are generated without document context.")
    return "\n\n".join(lines)


def build_interface(base_url: str | None = None, client: ChatClient | None = None) -> gr.Blocks:
    api_client = client or ChatClient(base_url=base_url or DEFAULT_API_URL)

    async def handle_message(message: str, history: list, conversation: Conversation):  # noqa: ARG001 - history handled by Gradio
        if not message.strip():
            yield "⚠️ Enter a question."
            return
        async for text in api_client.stream_reply(message, conversation=conversation):
            yield text

    async def handle_upload(file: object) -> str:
        path = _upload_path(file)
        if path is None:
            return "⚠️ Please choose a TXT, MD, PDF or DOCX file to upload."
        try:
            result = await api_client.upload(path)
        except APIError as exc:
            return f"⚠️ {exc}"
        return f"✅ {result.get('filename')}: {result.get('chunks')} chunks indexed"

    async def handle_status() -> str:
        try:
            return _format_status(await api_client.status())
        except APIError as exc:
            return f"⚠️ {exc}"

    async def handle_clear() -> str:
        try:
            result = await api_client.clear_store()
        except APIError as exc:
            return f"⚠️ {exc}"
        return f"✅ {result.get('message')}"

    with gr.Blocks(title="ragchat") as demo:
        # Deep-copied per browser session.
        conversation = gr.State(Conversation())
        gr.Markdown("## Chat with your documents")
        with gr.Row():
            with gr.Column(scale=1):
                upload_input = gr.File(label="Upload a document", file_types=[".txt", ".md", ".pdf", ".docx"])
                upload_button = gr.Button("Index document", variant="primary")
                upload_status = gr.Markdown("Ready to ingest documents.")
                status_button = gr.Button("Vector store status")
                clear_button = gr.Button("Clear vector store")
                admin_status = gr.Markdown("")
            with gr.Column(scale=2):
                gr.ChatInterface(
                    fn=handle_message,
                    textbox=gr.Textbox(placeholder="Ask a question about your documents..."),
                    additional_inputs=[conversation],
                )
        upload_button.click(fn=handle_upload, inputs=upload_input, outputs=upload_status)
        status_button.click(fn=handle_status, outputs=admin_status)
        clear_button.click(fn=handle_clear, outputs=admin_status)

    return demo


def launch(*, base_url: str | None = None, share: bool = False) -> None:
    """Launch the Gradio interface."""

    demo = build_interface(base_url=base_url)
    demo.launch(share=share)


if __name__ == "__main__":
    launch()
