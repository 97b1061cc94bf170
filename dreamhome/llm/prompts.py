"""
LLM Prompts for Property Visualisation.
Contains the shot catalog and the prompt-planning prompt.
"""

# Fixed ordered catalog; a plan for N shots uses the first N entries
SHOT_TYPES = [
    "Exterior (Facade must match the building type/class inferred from description)",
    "Living Room (Interior)",
    "Kitchen/Dining (Interior)",
    "Bedroom (Interior)",
    "Bathroom or Balcony/View (Interior/Exterior)",
]

PROMPT_PLANNING_PROMPT = """Analyze the following real estate description in Russian: "{description}".

Step 1: Determine the implied "Class" of the property (Economy, Standard, or Luxury) based on keywords and context.
- If Economy/Standard: The prompts must result in REALISTIC, authentic images. Avoid "luxury", "cinematic", or "opulent" styles. Use keywords like "soft natural light", "clean", "cozy", "realistic interior", "daylight", "standard materials". The goal is to make it look like a high-quality but honest real estate photo.
- If Luxury/Premium: Use "architectural photography", "dramatic lighting", "expensive materials", "magazine cover style", "interior design masterpiece".

Step 2: Create a plan for {count} distinct image{plural}.
Vary the lighting conditions (e.g., "soft morning light", "bright noon", "warm indoor lighting") to create visual variety across the set.

The {count} shot{plural} must include:
{shots}

For each shot, provide a 'label' (in Russian) and a detailed 'prompt' (in English) optimized for a photorealistic image generator.

Return the response as a JSON array of exactly {count} object{plural}.
"""


def build_planning_prompt(description: str, count: int) -> str:
    """Render the planning prompt for ``count`` shots from the catalog prefix."""
    shots = "\n".join(f"{idx + 1}. {shot}" for idx, shot in enumerate(SHOT_TYPES[:count]))
    return PROMPT_PLANNING_PROMPT.format(
        description=description,
        count=count,
        plural="s" if count > 1 else "",
        shots=shots,
    )
