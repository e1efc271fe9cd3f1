"""GPT proxy: forwards chat prompts to a chat-completion API with optional per-user memory."""
