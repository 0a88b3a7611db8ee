AGENT_SYSTEM_PROMPT_TEMPLATE = """
{agent_section}

## What you know about the user
{user_context}

## Recent conversation
{conversation}

Use the user's preferences and facts to personalize your answer, but do not recite them unless asked.
If a tool is available for the request, call it instead of describing what you would do.
"""

AGENT_SECTION_TEMPLATE = """You are {name}. {description}

## Agent context
{context}

## Instructions
{instructions}"""
