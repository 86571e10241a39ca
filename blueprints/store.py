"""Points store: browse cosmetic items, buy them and equip them."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from db_stores import StoreItemStoreDB
from helpers import current_user_id, json_body, parse_int

bp = Blueprint("store", __name__)


@bp.route("/api/store")
@login_required
def api_store():
    store = StoreItemStoreDB(current_user_id())
    items, points = store.items(request.args.get("category") or None)
    return jsonify({"items": items, "userPoints": points, "equipped": store.equipped()})


@bp.route("/api/store", methods=["POST"])
@login_required
def api_store_action():
    data = json_body()
    action = data.get("action")
    item_id = parse_int(data.get("itemId"))
    if not action or item_id is None:
        return jsonify({"error": "action and itemId are required"}), 400

    store = StoreItemStoreDB(current_user_id())
    if action == "purchase":
        result = store.purchase(item_id)
        return jsonify({"success": True, "message": f"Purchased {result['item']['name']}", **result})
    if action == "equip":
        item = store.equip(item_id)
        return jsonify({"success": True, "message": f"Equipped {item['name']}", "item": item})
    if action == "unequip":
        item = store.unequip(item_id)
        return jsonify({"success": True, "message": f"Unequipped {item['name']}", "item": item})
    return jsonify({"error": "Invalid action"}), 400
