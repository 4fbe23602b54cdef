# Overview: Flask API routes for sales reports.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_auth, require_permission
from ..services import report_service
from ..validation import ValidationError, parse_date, parse_optional_int


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/sales-summary")
@require_auth
@require_permission("reports:read")
def sales_summary_route():
    """
    Sales, credit notes and collections per payment method.

    Query params:
        date_from, date_to: YYYY-MM-DD (optional)
        location_id: int (optional)
    """
    try:
        summary = report_service.get_sales_summary(
            g.org_id,
            date_from=parse_date(request.args.get("date_from"), "date_from"),
            date_to=parse_date(request.args.get("date_to"), "date_to"),
            location_id=parse_optional_int(request.args.get("location_id"), "location_id"),
        )
    except (ValidationError, report_service.ReportError) as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(summary), 200
