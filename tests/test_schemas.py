import pytest
from pydantic import ValidationError as PydanticValidationError

from schemas import ListingPayload, VariantSchema
from schemas.listings import normalize_amount


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("₱1,299.50", "1299.50"),
        ("PHP 450", "450"),
        (99, "99"),
        ("0", "0"),
    ],
)
def test_normalize_amount(raw, expected):
    assert normalize_amount(raw) == expected


@pytest.mark.parametrize("raw", ["-1", "", "abc", "NaN", None, True])
def test_normalize_amount_rejects(raw):
    with pytest.raises(ValueError):
        normalize_amount(raw)


def test_payload_accepts_nested_category_and_single_image():
    payload = ListingPayload.model_validate(
        {
            "name": "  Canvas Tote ",
            "category": {"id": 7, "name": "Bags"},
            "base_price": "350",
            "image": "https://cdn.example.com/tote.jpg",
        }
    )

    assert payload.name == "Canvas Tote"
    assert payload.category == "Bags"
    assert payload.category_id == "7"
    assert payload.base_price == "350"
    assert payload.images == ["https://cdn.example.com/tote.jpg"]
    assert payload.variants == []


def test_payload_requires_an_image():
    with pytest.raises(PydanticValidationError):
        ListingPayload.model_validate(
            {"name": "Tote", "category": "Bags", "price": "1", "images": ["  "]}
        )


def test_variant_shapes_are_flattened():
    variant = VariantSchema.model_validate(
        {
            "label": "Large",
            "attributes": {"size": "L", "color": "Navy"},
            "price": "₱500",
            "thumbnail_url": "https://cdn.example.com/l.jpg",
        }
    )

    assert variant.name == "Large"
    assert variant.size == "L"
    assert variant.color == "Navy"
    assert variant.price == "500"
    assert variant.stock == 0
    assert variant.thumbnail == "https://cdn.example.com/l.jpg"


def test_content_excludes_id():
    payload = ListingPayload.model_validate(
        {"id": "sku-1", "name": "Tote", "category": "Bags", "price": "1", "images": ["a.jpg"]}
    )

    content = payload.content()

    assert "id" not in content
    assert content["base_price"] == "1"
