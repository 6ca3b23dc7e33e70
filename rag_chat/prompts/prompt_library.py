from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

SYSTEM_PROMPT = (
    "You are a helpful knowledge assistant. Your role is to answer questions "
    "based on the documents and content provided to you.\n\n"
    "When answering questions:\n"
    "1. Base your answers on the provided context from the documents\n"
    "2. If the context doesn't contain relevant information, acknowledge that "
    "and offer what you can help with\n"
    "3. Be concise but thorough\n"
    "4. Reference specific sources when helpful\n"
    "5. Feel free to expand on topics using your general knowledge when the "
    "documents provide a foundation\n\n"
    "Be helpful, accurate, and conversational."
)

CONTEXT_HEADER = "\n\nRelevant context from company documents:\n"


# Prompt for answering with retrieved context; {context} is empty when nothing was retrieved
context_qa_prompt = ChatPromptTemplate.from_messages(
    [
        ("system", "{system_prompt}{context}"),
        MessagesPlaceholder("chat_history"),
        ("human", "{input}"),
    ]
)


# Central dictionary to register prompts
PROMPT_REGISTRY = {
    "context_qa": context_qa_prompt,
}
