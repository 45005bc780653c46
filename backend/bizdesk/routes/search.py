# Overview: Flask API route for global search.

from flask import Blueprint, request, jsonify

from ..services.search_service import global_search
from ..decorators import require_auth


search_bp = Blueprint("search", __name__, url_prefix="/api/search")


@search_bp.get("")
@require_auth
def search_route():
    """Up to five products, clients, sales and employees matching ?q=."""
    return jsonify({"results": global_search(request.args.get("q"))}), 200
