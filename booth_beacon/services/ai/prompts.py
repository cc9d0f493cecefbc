"""Prompt templates for LLM booth extraction."""

PROMPT_VERSION = "2.0"

# JSON Schema for the extraction output
BOOTH_EXTRACTION_SCHEMA = {
    "type": "object",
    "properties": {
        "booths": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": "Venue or booth name"},
                    "address": {"type": ["string", "null"], "description": "Street address with number"},
                    "city": {"type": ["string", "null"]},
                    "region": {"type": ["string", "null"], "description": "State, province or region"},
                    "country": {"type": ["string", "null"]},
                    "postal_code": {"type": ["string", "null"]},
                    "latitude": {"type": ["number", "null"]},
                    "longitude": {"type": ["number", "null"]},
                    "description": {"type": ["string", "null"]},
                    "website": {"type": ["string", "null"]},
                },
                "required": ["name"],
            },
        },
    },
    "required": ["booths"],
}

SYSTEM_PROMPT = """You are a photo booth data extraction specialist. Your task is to find every analog/chemical photo booth location in web content and return it as structured JSON.

CRITICAL RULES:
1. Extract EVERY booth mentioned. Do not stop after the first items and do not summarize long lists
2. NEVER invent information that is not present in the content
3. Use null for any field you cannot find
4. The address field holds the street address with its number, never the venue name
5. Extract coordinates only if they appear in the content
6. If several booths are at one venue, return one entry per booth
7. If a booth is described as removed or closed, leave it out

Look for terms such as "photo booth", "photobooth", "fotoautomat", "photomaton", "cabine photo" and machine models such as Photo-Me or Photomatic. Booths can appear in tables, lists, prose, map markers or embedded data.

Output ONLY valid JSON matching the schema. No additional text or explanation."""


SOURCE_TYPE_GUIDANCE = {
    "directory": "This is a directory of photo booths. Extract every listing with complete details.",
    "operator": "This is a photo booth operator site. Extract all of their booth locations.",
    "city_guide": "This is a city guide article. Look for recommended venues and addresses in the text.",
    "blog": "This is a blog post. Extract any photo booth locations it mentions.",
    "community": "This is community content (forum or social). Extract user-reported locations.",
}


EXTRACTION_PROMPT_TEMPLATE = """Extract all photo booth locations from this {source_type} content{source_clause}{chunk_clause}.

{guidance}

You MUST use EXACTLY this JSON structure:

{{
  "booths": [
    {{
      "name": "string - venue or booth name",
      "address": "string - street address with number" or null,
      "city": "string" or null,
      "region": "string - state/province" or null,
      "country": "string" or null,
      "postal_code": "string" or null,
      "latitude": number or null,
      "longitude": number or null,
      "description": "string" or null,
      "website": "string" or null
    }}
  ]
}}

If the content contains no photo booths, return {{"booths": []}}.

CONTENT:
{content}"""


STRICT_REASK_PROMPT_TEMPLATE = """Your previous answer could not be used.

ERROR:
{error_message}

Answer again for the same content. This time:
- Output a single JSON object and nothing else. No markdown code blocks, no commentary
- The object has exactly one key, "booths", whose value is an array
- Every array item is an object with a non-empty string "name"
- latitude and longitude are numbers or null, never strings
- Every other field is a string or null

JSON Schema:
{schema}

CONTENT:
{content}"""


def build_extraction_prompt(
    content: str,
    source_type: str = "directory",
    source_name: str | None = None,
    chunk_index: int = 0,
    total_chunks: int = 1,
) -> str:
    """
    Build the extraction prompt for one content chunk.

    Args:
        content: Cleaned page content.
        source_type: Kind of source (directory, operator, ...).
        source_name: Optional source name for context.
        chunk_index: Zero-based index of this chunk.
        total_chunks: Number of chunks the page was split into.

    Returns:
        The formatted prompt string.
    """
    source_clause = f" from {source_name}" if source_name else ""
    chunk_clause = f" (chunk {chunk_index + 1} of {total_chunks})" if total_chunks > 1 else ""
    return EXTRACTION_PROMPT_TEMPLATE.format(
        source_type=source_type.replace("_", " "),
        source_clause=source_clause,
        chunk_clause=chunk_clause,
        guidance=SOURCE_TYPE_GUIDANCE.get(source_type, ""),
        content=content,
    )


def build_strict_reask_prompt(content: str, error_message: str, schema: str) -> str:
    """
    Build the single stricter re-ask prompt used after malformed output.

    Args:
        content: The same content chunk that was sent before.
        error_message: Why the previous output was rejected.
        schema: JSON schema text.

    Returns:
        The formatted prompt string.
    """
    return STRICT_REASK_PROMPT_TEMPLATE.format(
        error_message=error_message,
        schema=schema,
        content=content,
    )
