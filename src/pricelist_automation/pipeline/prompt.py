from __future__ import annotations

from ..domain.models import EncodedPayload, ExtractionPrompt


PROMPT_VERSION = "v2"

# v1 listed "price" twice in the example object (the second one meant
# "group"); v2 spells out "group".
PROMPT_TEMPLATE = """
## Role
You are an experienced manager in the beauty and personal-care industry. Read the uploaded
price-list image, analyze the text on it, and group the entries by their position on the page
or by the table/section they belong to. Produce a price-list JSON document.

## Rules
- If an entry shows an "original price" or a struck-through price next to another price, put the
  struck-through / original value in "originalPrice" and the current price in "price".
- Section titles, table headings, or category labels above a block of entries go into "group".
- Copy prices exactly as printed (currency symbols, separators, "from", ranges); do not convert them.
- Omit "originalPrice" and "group" when they do not apply.

## Output
Return the result in exactly this JSON format:
{
  "category": "title of the price list",
  "service": [
    {
      "name": "item name",
      "price": "current price as printed",
      "originalPrice": "original price (only if present, e.g. a struck-through price)",
      "group": "section (only if present)"
    }
  ],
  "analyzedAt": "analysis time (ISO 8601)"
}

Make sure the reply is valid JSON.
""".strip()


def build_prompt(payload: EncodedPayload, template: str = PROMPT_TEMPLATE) -> ExtractionPrompt:
    return ExtractionPrompt(version=PROMPT_VERSION, instruction=template, image=payload)
