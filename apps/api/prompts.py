"""Тексты промптов для AI сервиса (look / item try-on / onboarding)."""
from typing import Sequence

DIRECTOR_SYSTEM = "You are a fashion photography director."

CATEGORY_FRAMING = {
    "top": "Show the person from the waist up.",
    "outerwear": "Show the person from the waist up.",
    "bottom": "Show the full body.",
    "dress": "Show the full body.",
    "outfit": "Show the full body.",
    "swimwear": "Show the full body.",
    "shoes": "Focus on the lower body and feet.",
}
DEFAULT_FRAMING = "Frame the shot so the item is clearly visible."


def describe_item(name: str, brand: str | None, colors: Sequence[str] | None, selected_color: str | None = None) -> str:
    color_str = selected_color or "/".join(colors or [])
    by = f" by {brand}" if brand else ""
    return f"{color_str} {name}{by}".strip()


# ---------------- Look ----------------

def look_prompt_request(descriptions: Sequence[str]) -> str:
    numbered = "\n".join(f"{i + 1}. {d}" for i, d in enumerate(descriptions))
    return (
        "Write a detailed image generation prompt for a virtual try-on photo.\n\n"
        "The person in the reference photo should be shown wearing these clothing items:\n"
        f"{numbered}\n\n"
        "Create a prompt that:\n"
        "1. Describes how the person should be wearing each clothing item naturally\n"
        "2. Maintains the person's identity, face, and body from the reference\n"
        "3. Shows all the clothing items together as a complete outfit\n"
        "4. Results in a high-quality, professional fashion photography style image\n"
        "5. Specifies natural lighting and a clean background\n\n"
        "Keep the prompt concise but detailed (under 500 characters). "
        "Do not include any markdown formatting."
    )


def look_full_prompt(descriptions: Sequence[str], generated: str) -> str:
    refs = "\n".join(f"Reference Image {i + 2}: {d}" for i, d in enumerate(descriptions))
    return (
        "Virtual try-on fashion photo: Create an image of this person (shown in the first "
        "reference image) wearing the clothing items shown in the other reference images.\n\n"
        "Reference Image 1: Photo of the person who should be wearing the clothes\n"
        f"{refs}\n\n"
        f"{generated}\n\n"
        "Important:\n"
        "- Keep the person's face, body type & size, and identity exactly as shown in Reference Image 1\n"
        "- Dress them in ALL the clothing items from the other reference images\n"
        "- Make it look like a professional fashion photograph\n"
        "- The person should look natural and confident wearing these items"
    )


def look_simple_prompt(outfit_description: str) -> str:
    return (
        "Generate a professional fashion photograph of THIS PERSON (shown in the first "
        f"reference image) wearing: {outfit_description}.\n"
        "Make it look like a high-end fashion editorial photo with clean background and natural lighting.\n"
        "Keep the person's identity, face, and body type EXACTLY as shown in the reference image."
    )


# ---------------- Item try-on ----------------

def try_on_prompt_request(description: str, category: str, item_description: str | None) -> str:
    details = f"Description: {item_description}\n" if item_description else ""
    framing = CATEGORY_FRAMING.get(category, DEFAULT_FRAMING)
    return (
        "Write a detailed image generation prompt for a virtual try-on photo.\n\n"
        "The person in the reference photo should be shown wearing this single item:\n"
        f"{description}\n\n"
        f"Category: {category}\n"
        f"{details}\n"
        "Create a prompt that:\n"
        "1. Shows the person wearing ONLY this single item naturally\n"
        "2. Maintains the person's identity, face, and body from the reference\n"
        "3. Results in a high-quality, professional fashion photography style image\n"
        "4. Specifies natural lighting and a clean background\n"
        "5. Shows the item clearly and prominently\n"
        f"6. {framing}\n\n"
        "Keep the prompt concise but detailed (under 400 characters). "
        "Do not include any markdown formatting."
    )


def try_on_full_prompt(description: str, generated: str, has_item_image: bool) -> str:
    ref2 = f"Reference Image 2: {description}\n" if has_item_image else f"Item: {description}\n"
    return (
        "Virtual try-on fashion photo: Create an image of this person (shown in the first "
        "reference image) wearing the clothing item described below.\n\n"
        "Reference Image 1: Photo of the person who should be wearing the item\n"
        f"{ref2}\n"
        f"{generated}\n\n"
        "Important:\n"
        "- Keep the person's face, body type & size, and identity exactly as shown in Reference Image 1\n"
        "- Show ONLY this single item - no other clothing items or outfits\n"
        "- Make it look like a professional fashion photograph\n"
        "- The person should look natural and confident wearing this item"
    )


def try_on_simple_prompt(description: str) -> str:
    return (
        "Generate a professional fashion photograph of THIS PERSON (shown in the reference image) "
        f"wearing: {description}.\n"
        "Make it look like a high-end fashion editorial photo with clean background and natural lighting.\n"
        "Show ONLY this single item prominently."
    )


# ---------------- Onboarding ----------------

def onboarding_system_prompt(gender: str | None, styles: Sequence[str], budget: str | None,
                             first_name: str | None, items: Sequence) -> str:
    catalog = "\n".join(
        f'- ID: {i.id}, Name: "{i.name}", Category: {i.category}, '
        f"Colors: {', '.join(i.colors or [])}, Tags: {', '.join(i.tags or [])}, "
        f"Price: {i.price} {i.currency}"
        for i in items
    )

    if gender == "male":
        gender_rules = (
            "- User is MALE: NEVER include dresses, skirts, blouses, heels, or feminine clothing.\n"
            "- ONLY use items categorized as: top, bottom, outerwear, shoes, accessory, bag, jewelry"
        )
    elif gender == "female":
        gender_rules = "- User is FEMALE: You may include dresses, skirts, blouses, heels, and any clothing items."
    else:
        gender_rules = "- Gender not specified: Use gender-neutral items only."

    return (
        "You are Nima, an expert fashion stylist with a fun, energetic personality.\n"
        "Your task is to create 3 unique, stylish outfit combinations (looks) for a user "
        "based on their preferences.\n\n"
        "User Profile:\n"
        f"- Gender preference: {gender or 'not specified'}\n"
        f"- Style preferences: {', '.join(styles) or 'casual'}\n"
        f"- Budget range: {budget or 'mid'}\n"
        f"- Name: {first_name or 'friend'}\n\n"
        "Available Items (use these item IDs exactly):\n"
        f"{catalog}\n\n"
        "GENDER RULES:\n"
        f"{gender_rules}\n\n"
        "OUTFIT RULES:\n"
        "1. Create exactly 3 different looks with 2 to 4 items each, varied sizes\n"
        "2. A dress, jumpsuit or outfit/set is complete on its own: only add shoes/accessories/bag/jewelry\n"
        "3. At most ONE item per category in a look; never repeat items across looks\n"
        "4. Items in each look must match in formality, style and color\n"
        "5. Give each look a catchy name and an occasion\n\n"
        "Return exactly 3 looks as a JSON array."
    )


ONBOARDING_USER_PROMPT = (
    "Create 3 complete outfits. Return a JSON array with this exact structure:\n"
    '[{"items": [{"itemId": "id", "category": "dress", "name": "item name"}], '
    '"occasion": "date_night", "styleTags": ["elegant"], "name": "Candlelit Dinner Ready"}]\n\n'
    "You MUST ALWAYS return a valid JSON array, even if you can only create 1 or 2 looks. "
    "Never respond with conversational text. If you cannot create any looks, return []."
)


def nima_comment_prompt(look_name: str, occasion: str, first_name: str | None) -> str:
    who = f" (their name is {first_name})" if first_name else ""
    return (
        "You are Nima, a fun and hyping fashion stylist. Generate a short, energetic comment "
        f'(1-2 sentences max) about this outfit called "{look_name}" for {occasion}.\n'
        f"Address the user{who} directly. Be encouraging, fun, and use fashion-forward language.\n"
        "Keep it under 100 characters if possible. No emojis."
    )
