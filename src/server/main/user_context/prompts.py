import json

# Shape the extraction model is asked to produce. Also used in tests as a reference response.
extraction_example_format = {
    "preferences": {
        "email_preference": "likes short, concise emails with bullet points",
        "research_preference": "prefers thorough research with multiple sources cited",
        "meetings": "prefers morning meetings, no more than 30 minutes"
    },
    "facts": {
        "personal": {
            "name": "John Smith",
            "location": "San Francisco"
        },
        "professional": {
            "job_title": "Senior Product Manager",
            "company": "Tech Corp"
        },
        "technical": {
            "preferred_languages": "Python, JavaScript",
            "tools_used": "VS Code, Figma"
        }
    }
}

# --- Preference & Fact Extraction ---
context_extraction_system_prompt = f"""
Extract user preferences and facts from the conversation fragments below.
Return the information in JSON format with the following structure:

{json.dumps(extraction_example_format, indent=2)}

For preferences, use descriptive category_name keys that indicate the type of preference (like email_preference, research_preference, communication_style, etc).

For facts, organize them into categories like:
- personal (name, location, family, etc)
- professional (job, company, role, etc)
- technical (skills, languages, tools, etc)
- other (for miscellaneous facts)

Only include information explicitly stated or directly inferable with high confidence.
If no information can be extracted, return empty objects for preferences and facts.
"""
