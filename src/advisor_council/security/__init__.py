"""Input safety -- prompt fencing and validation of user text."""
from .prompt_guard import flag_injection, sanitize_for_prompt, wrap_user_content
from .validators import ValidationError, validate_length, validate_not_empty
