"""Static ingredient substitution suggestions."""

from grocerypricing.pricing.models import IngredientAlternative

DEFAULT_SUBSTITUTE_PRICE = 2.99

SUBSTITUTIONS: dict[str, list[str]] = {
    "instant dashi stock powder": ["kombu seaweed", "bonito flakes", "chicken bouillon", "vegetable stock"],
    "okonomiyaki sauce": ["worcestershire sauce + ketchup", "tonkatsu sauce", "teriyaki sauce"],
    "miso paste": ["soy sauce", "tahini", "vegetable bouillon"],
    "saffron": ["turmeric + paprika", "safflower", "annatto"],
    "ghee": ["clarified butter", "coconut oil", "regular butter"],
    "gochujang": ["sriracha + miso", "harissa", "sambal oelek"],
    "fish sauce": ["soy sauce + lime", "worcestershire sauce", "anchovy paste"],
    "tamarind paste": ["lime juice + brown sugar", "worcestershire sauce", "date paste"],
    "rice wine": ["dry sherry", "sake", "white wine + sugar"],
    "paneer": ["firm tofu", "halloumi", "ricotta cheese"],
}


def find_alternatives(ingredient_name: str, cultural_context: str | None = None) -> list[IngredientAlternative]:
    """Return substitutes for an ingredient, empty when none are known."""
    name = (ingredient_name or "").lower().strip()
    alternatives = [
        IngredientAlternative(
            name=substitute,
            price=DEFAULT_SUBSTITUTE_PRICE,
            store_name="Various stores",
            notes=f"Common substitute for {ingredient_name}",
        )
        for substitute in SUBSTITUTIONS.get(name, [])
    ]

    if (cultural_context or "").lower() == "japanese" and "dashi" in name:
        alternatives.append(
            IngredientAlternative(
                name="Hondashi (concentrated)",
                price=5.99,
                store_name="Asian Market",
                notes="More concentrated, use less",
            )
        )

    return alternatives
