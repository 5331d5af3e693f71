"""
Flask JSON API for GridWatch.

Endpoints (consumed by the dashboard frontend):
  GET    /api/health                      - Liveness, loop status, stored alert and delivery counts
  GET    /api/alerts                      - Filtered alert list (status, severity, category, limit)
  POST   /api/alerts                      - Create an alert directly
  GET    /api/alerts/<id>                 - Single alert
  POST   /api/alerts/<id>/acknowledge     - {"actor": "..."}
  POST   /api/alerts/<id>/resolve         - {"actor": "..."}
  POST   /api/alerts/<id>/dismiss
  GET    /api/alerts/<id>/deliveries      - Notification log for one alert
  GET    /api/metrics                     - Aggregated alert metrics
  GET    /api/rules                       - All rules
  POST   /api/rules                       - Create rule
  PATCH  /api/rules/<id>                  - Update rule
  DELETE /api/rules/<id>                  - Delete rule
  GET    /api/notifications               - Recent dashboard notifications
  POST   /api/evaluate                    - Evaluate rules against {"readings": {...}}

Started via: python main.py web [--port 5000] [--host 0.0.0.0]
"""
import logging

from flask import Flask, jsonify, request

from alerts.rules_manager import RuleValidationError
from models.enums import AlertStatus, Category, Severity

logger = logging.getLogger("gridwatch.web.app")


def _list_arg(name, enum_cls):
    """Collect ?name=a&name=b or ?name=a,b into enum values. Raises ValueError."""
    raw = request.args.getlist(name)
    if not raw:
        return None
    values = [v.strip() for item in raw for v in item.split(",") if v.strip()]
    return [enum_cls(v) for v in values]


def create_app(config: dict, engines: dict) -> Flask:
    """
    Factory function. Receives initialized engines from main.py CLI or wsgi.py.

    Args:
        config: Application config dict
        engines: dict of initialized objects (service, db)
    """
    app = Flask(__name__)
    service = engines["service"]
    db = engines.get("db")

    def _body():
        body = request.get_json(silent=True)
        return body if isinstance(body, dict) else {}

    def _limit_arg(default=None):
        limit = request.args.get("limit", default, type=int)
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        return limit

    def _alert_or_404(alert_id):
        alert = service.get_alert(alert_id)
        if alert is None:
            return None, (jsonify({"error": f"alert {alert_id} not found"}), 404)
        return alert, None

    def _transition(alert_id, ok, action):
        alert = service.get_alert(alert_id)
        if alert is None:
            return jsonify({"error": f"alert {alert_id} not found"}), 404
        if not ok:
            return jsonify({
                "error": f"cannot {action} alert in status {alert.status.value}",
                "alert": alert.to_dict(),
            }), 409
        return jsonify({"ok": True, "alert": alert.to_dict()})

    # ─── Health ──────────────────────────────────────────

    @app.route("/api/health")
    def api_health():
        return jsonify({
            "status": "ok",
            "running": service.running,
            "rules": len(service.get_rules()),
            "alerts": len(service.query()),
            "stored_alerts": db.count_alerts() if db is not None else None,
            "deliveries": db.get_delivery_stats() if db is not None else None,
        })

    # ─── Alerts ──────────────────────────────────────────

    @app.route("/api/alerts", methods=["GET"])
    def api_alerts():
        try:
            status = _list_arg("status", AlertStatus)
            severity = _list_arg("severity", Severity)
            category = _list_arg("category", Category)
            limit = _limit_arg()
            alerts = service.query(status=status, severity=severity, category=category, limit=limit)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        return jsonify({"alerts": [a.to_dict() for a in alerts], "count": len(alerts)})

    @app.route("/api/alerts", methods=["POST"])
    def api_create_alert():
        body = _body()
        if not body.get("title"):
            return jsonify({"error": "title is required"}), 400
        try:
            Severity(body.get("severity", "info"))
            Category(body.get("category", "system"))
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        body.pop("rule_id", None)
        alert = service.create_alert(body)
        return jsonify({"alert": alert.to_dict()}), 201

    @app.route("/api/alerts/<alert_id>")
    def api_alert(alert_id):
        alert, err = _alert_or_404(alert_id)
        if err:
            return err
        return jsonify({"alert": alert.to_dict()})

    @app.route("/api/alerts/<alert_id>/acknowledge", methods=["POST"])
    def api_acknowledge(alert_id):
        actor = _body().get("actor", "anonymous")
        return _transition(alert_id, service.acknowledge(alert_id, actor), "acknowledge")

    @app.route("/api/alerts/<alert_id>/resolve", methods=["POST"])
    def api_resolve(alert_id):
        actor = _body().get("actor", "anonymous")
        return _transition(alert_id, service.resolve(alert_id, actor), "resolve")

    @app.route("/api/alerts/<alert_id>/dismiss", methods=["POST"])
    def api_dismiss(alert_id):
        return _transition(alert_id, service.dismiss(alert_id), "dismiss")

    @app.route("/api/alerts/<alert_id>/deliveries")
    def api_deliveries(alert_id):
        _, err = _alert_or_404(alert_id)
        if err:
            return err
        entries = db.get_delivery_log(alert_id=alert_id) if db is not None else []
        return jsonify({"deliveries": entries, "count": len(entries)})

    @app.route("/api/metrics")
    def api_metrics():
        return jsonify(service.get_metrics().to_dict())

    # ─── Rules ───────────────────────────────────────────

    @app.route("/api/rules", methods=["GET"])
    def api_rules():
        rules = service.get_rules()
        return jsonify({"rules": [r.to_dict() for r in rules], "count": len(rules)})

    @app.route("/api/rules", methods=["POST"])
    def api_create_rule():
        try:
            rule = service.create_rule(_body())
        except RuleValidationError as e:
            return jsonify({"error": str(e)}), 400
        return jsonify({"rule": rule.to_dict()}), 201

    @app.route("/api/rules/<rule_id>", methods=["PATCH"])
    def api_update_rule(rule_id):
        try:
            ok = service.update_rule(rule_id, _body())
        except RuleValidationError as e:
            return jsonify({"error": str(e)}), 400
        if not ok:
            return jsonify({"error": f"rule {rule_id} not found"}), 404
        return jsonify({"rule": service.get_rule(rule_id).to_dict()})

    @app.route("/api/rules/<rule_id>", methods=["DELETE"])
    def api_delete_rule(rule_id):
        if not service.delete_rule(rule_id):
            return jsonify({"error": f"rule {rule_id} not found"}), 404
        return jsonify({"ok": True})

    # ─── Notifications / evaluation ──────────────────────

    @app.route("/api/notifications")
    def api_notifications():
        try:
            limit = min(_limit_arg(50), 200)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        items = service.recent_notifications(limit)
        return jsonify({"notifications": items, "count": len(items)})

    @app.route("/api/evaluate", methods=["POST"])
    def api_evaluate():
        readings = _body().get("readings")
        if not isinstance(readings, dict):
            return jsonify({"error": "readings must be an object of metric -> number"}), 400
        try:
            readings = {k: float(v) for k, v in readings.items()}
        except (TypeError, ValueError):
            return jsonify({"error": "readings values must be numbers"}), 400
        fired = service.evaluate(readings)
        return jsonify({"fired": [a.to_dict() for a in fired], "count": len(fired)})

    return app
