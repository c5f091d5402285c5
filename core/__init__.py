"""
Shared building blocks for the caption pipeline.

- `settings` : pydantic-settings configuration
- `errors`   : error taxonomy
- `types`    : immutable value types passed between stages
"""
