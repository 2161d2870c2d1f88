"""File-backed task records: model, Markdown codec and store."""
