"""Storefront listing: search, price range, sort and review ratings."""
from typing import Any, Dict, Iterable, List, Optional

SORT_KEYS = ("name", "price-low", "price-high", "rating")


def fuzzy_match(text: Optional[str], search: Optional[str]) -> bool:
    """Substring match, or every search word prefixes some word of the text."""
    if not search:
        return True
    search_lower = search.lower()
    text_lower = (text or "").lower()
    if search_lower in text_lower:
        return True
    text_words = text_lower.split()
    return all(any(w.startswith(s) for w in text_words) for s in search_lower.split())


def approved_reviews(reviews: Iterable[Dict[str, Any]], product_id: Optional[str] = None) -> List[Dict[str, Any]]:
    return [
        r for r in reviews
        if r.get("status") == "approved" and (product_id is None or r.get("product_id") == product_id)
    ]


def average_rating(product_id: str, reviews: Iterable[Dict[str, Any]]) -> float:
    """Mean rating of the product's approved reviews to one decimal; 0.0 means no rating to show."""
    ratings = [r["rating"] for r in approved_reviews(reviews, product_id)]
    if not ratings:
        return 0.0
    return round(sum(ratings) / len(ratings), 1)


def filter_products(products: Iterable[Dict[str, Any]], search: Optional[str] = None,
                    min_price: Optional[float] = None, max_price: Optional[float] = None) -> List[Dict[str, Any]]:
    matched = []
    for p in products:
        if not (fuzzy_match(p.get("name"), search) or fuzzy_match(p.get("description"), search)):
            continue
        price = float(p.get("price") or 0)
        if min_price is not None and price < min_price:
            continue
        if max_price is not None and price > max_price:
            continue
        matched.append(p)
    return matched


def sort_products(products: List[Dict[str, Any]], sort_by: str = "name",
                  reviews: Iterable[Dict[str, Any]] = ()) -> List[Dict[str, Any]]:
    if sort_by == "price-low":
        return sorted(products, key=lambda p: float(p.get("price") or 0))
    if sort_by == "price-high":
        return sorted(products, key=lambda p: float(p.get("price") or 0), reverse=True)
    if sort_by == "rating":
        reviews = list(reviews)
        return sorted(products, key=lambda p: average_rating(p["id"], reviews), reverse=True)
    return sorted(products, key=lambda p: (p.get("name") or "").lower())


def apply_listing(products: Iterable[Dict[str, Any]], reviews: Iterable[Dict[str, Any]],
                  search: Optional[str] = None, min_price: Optional[float] = None,
                  max_price: Optional[float] = None, sort_by: str = "name") -> List[Dict[str, Any]]:
    """Filter and sort the full product set, attaching rating and review count to each item."""
    reviews = approved_reviews(reviews)
    items = sort_products(filter_products(products, search, min_price, max_price), sort_by, reviews)
    listing = []
    for p in items:
        product_reviews = approved_reviews(reviews, p["id"])
        listing.append({
            **p,
            "average_rating": average_rating(p["id"], product_reviews),
            "review_count": len(product_reviews),
        })
    return listing
