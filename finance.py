"""
Platform finance rollups over the order history.

Only payment-confirmed orders count. Payout eligibility starts at delivery, so
pending payouts only sum delivered orders. Amounts are in the base currency
unit; minor units exist only at the gateway boundary.
"""
from database import get_db
from order_status import PAYMENT_CONFIRMED


def _confirmed(statuses=PAYMENT_CONFIRMED) -> dict:
    return {"$match": {"status": {"$in": list(statuses)}}}


def get_finance_stats() -> dict:
    coll = get_db()["order"]
    totals = list(coll.aggregate([
        _confirmed(),
        {"$unwind": "$items"},
        {"$group": {
            "_id": None,
            "total_platform_revenue": {"$sum": "$items.commission_amount"},
            "total_seller_earnings": {"$sum": "$items.seller_earnings"},
            "total_gmv": {"$sum": "$items.item_total"},
        }},
    ]))
    pending = list(coll.aggregate([
        _confirmed(("delivered",)),
        {"$unwind": "$items"},
        {"$group": {"_id": None, "amount": {"$sum": "$items.seller_earnings"}}},
    ]))
    row = totals[0] if totals else {}
    return {
        "total_platform_revenue": row.get("total_platform_revenue", 0),
        "total_seller_earnings": row.get("total_seller_earnings", 0),
        "total_gmv": row.get("total_gmv", 0),
        "pending_payouts": pending[0]["amount"] if pending else 0,
    }


def get_payouts() -> list:
    """Per-seller earnings report. Read only: nothing here moves money."""
    groups = list(get_db()["order"].aggregate([
        _confirmed(),
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.seller_id",
            "total_earnings": {"$sum": "$items.seller_earnings"},
            "total_commission": {"$sum": "$items.commission_amount"},
            "orders": {"$addToSet": "$_id"},
        }},
    ]))
    seller_ids = [g["_id"] for g in groups]
    profiles = {p["user_id"]: p for p in get_db()["seller"].find({"user_id": {"$in": seller_ids}})}

    payouts = []
    for g in groups:
        profile = profiles.get(g["_id"]) or {}
        payouts.append({
            "seller_id": g["_id"],
            "total_earnings": g["total_earnings"],
            "total_commission": g["total_commission"],
            "orders_count": len(g["orders"]),
            "store_name": profile.get("store_name"),
            "bank_details": profile.get("bank_details"),
        })
    payouts.sort(key=lambda p: p["total_earnings"], reverse=True)
    return payouts
