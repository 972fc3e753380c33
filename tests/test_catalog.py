import pytest

from catalog import apply_listing, average_rating, filter_products, fuzzy_match, sort_products

PRODUCTS = [
    {"id": "1", "name": "Avalanche Kit", "price": 149.0, "description": "Beacon checklists"},
    {"id": "2", "name": "Radio Beacon", "price": 89.5, "description": "Dispatch log pack"},
    {"id": "3", "name": "Patrol Scheduler", "price": 29.0, "description": "Shift scheduling"},
    {"id": "4", "name": "first aid binder", "price": 29.0, "description": None},
]

REVIEWS = [
    {"product_id": "2", "rating": 5, "status": "approved"},
    {"product_id": "2", "rating": 4, "status": "approved"},
    {"product_id": "3", "rating": 3, "status": "approved"},
    {"product_id": "1", "rating": 5, "status": "pending"},
    {"product_id": "3", "rating": 1, "status": "rejected"},
]


def names(products):
    return [p["name"] for p in products]


def test_search_prefix_matches_only_one_product():
    assert names(filter_products(PRODUCTS, "ava")) == ["Avalanche Kit"]


@pytest.mark.parametrize("text,search,expected", [
    ("Avalanche Kit", "lanche", True),
    ("Avalanche Kit", "ava ki", True),
    ("Avalanche Kit", "kit ava", True),
    ("Avalanche Kit", "ava box", False),
    ("Avalanche Kit", "", True),
    (None, "ava", False),
])
def test_fuzzy_match(text, search, expected):
    assert fuzzy_match(text, search) is expected


def test_search_checks_description():
    assert names(filter_products(PRODUCTS, "dispatch")) == ["Radio Beacon"]
    assert names(filter_products(PRODUCTS, "beacon")) == ["Avalanche Kit", "Radio Beacon"]


def test_price_range_is_inclusive():
    assert names(filter_products(PRODUCTS, min_price=29, max_price=89.5)) == [
        "Radio Beacon", "Patrol Scheduler", "first aid binder",
    ]
    assert filter_products(PRODUCTS, min_price=150) == []


def test_sort_by_name_ignores_case():
    assert names(sort_products(PRODUCTS, "name")) == [
        "Avalanche Kit", "first aid binder", "Patrol Scheduler", "Radio Beacon",
    ]


def test_price_sorts_keep_original_order_for_ties():
    assert names(sort_products(PRODUCTS, "price-low")) == [
        "Patrol Scheduler", "first aid binder", "Radio Beacon", "Avalanche Kit",
    ]
    assert names(sort_products(PRODUCTS, "price-high")) == [
        "Avalanche Kit", "Radio Beacon", "Patrol Scheduler", "first aid binder",
    ]


def test_sort_by_rating_uses_approved_reviews():
    assert names(sort_products(PRODUCTS, "rating", REVIEWS)) == [
        "Radio Beacon", "Patrol Scheduler", "Avalanche Kit", "first aid binder",
    ]


def test_average_rating_counts_only_approved_reviews():
    assert average_rating("2", REVIEWS) == 4.5
    assert average_rating("3", REVIEWS) == 3
    assert average_rating("1", REVIEWS) == 0
    assert average_rating("4", []) == 0


def test_apply_listing_attaches_rating_and_count():
    listing = apply_listing(PRODUCTS, REVIEWS, search="beacon", sort_by="price-low")
    assert [(p["name"], p["average_rating"], p["review_count"]) for p in listing] == [
        ("Radio Beacon", 4.5, 2),
        ("Avalanche Kit", 0, 0),
    ]


def test_average_rating_is_a_float_rounded_to_one_decimal():
    reviews = [{"product_id": "9", "rating": r, "status": "approved"} for r in (5, 4, 4)]
    assert average_rating("9", reviews) == 4.3
    assert isinstance(average_rating("9", []), float)

    listing = apply_listing([{"id": "9", "name": "Toboggan", "price": 500}], reviews)
    assert listing[0]["average_rating"] == 4.3
