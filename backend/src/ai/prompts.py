"""
System prompts for chat completions.
"""
from typing import Optional

PROJECT_PLAN_SYSTEM_PROMPT = """When the user requests a project plan, include a structured JSON block in your response using this EXACT format:

```json
{
  "workstreams": [
    {
      "title": "Workstream Title",
      "description": "Brief description of this workstream",
      "deliverables": [
        { "title": "Deliverable Title", "description": "Detailed description" }
      ]
    }
  ]
}
```

You may include explanatory text before and after the JSON block. The JSON block is rendered as an interactive accordion with expandable workstreams and deliverables."""

BASE_SYSTEM_PROMPT = f"""You are a helpful AI assistant. You provide clear, concise, and accurate responses.

{PROJECT_PLAN_SYSTEM_PROMPT}"""


def build_system_prompt(override: Optional[str] = None) -> str:
    """
    Build the system prompt sent with every completion.

    A configured override replaces the base prompt but keeps the
    project plan formatting rules.
    """
    if override and override.strip():
        return f"{override.strip()}\n\n{PROJECT_PLAN_SYSTEM_PROMPT}"
    return BASE_SYSTEM_PROMPT
