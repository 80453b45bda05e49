"""
Memory Game Statistics Server

A small Flask server that receives finished games from clients
and serves the leaderboard and player statistics as JSON.
"""
import logging

from flask import Flask, jsonify, request

from config import configure_logging, get_config
from database import get_database
from shared.models import GameRecord, ValidationError, validate_username

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["DATABASE"] = get_config().db_path

REQUIRED_GAME_FIELDS = ['player_id', 'pairs_count', 'moves_count', 'start_time',
                        'end_time', 'status', 'score']
FINISHED_STATUSES = ('completed', 'abandoned')


def get_db():
    return get_database(app.config["DATABASE"])


def init_db():
    """Initialize the database if it doesn't exist."""
    db = get_db()
    logger.info("Database initialized at %s", db.db_file)


@app.route('/health')
def health():
    return jsonify({"status": "ok"})


@app.route('/api/players', methods=['POST'])
def create_player():
    data = request.get_json(silent=True) or {}
    try:
        username = validate_username(data.get('username', ''))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    player_id = get_db().create_player(username)
    if player_id < 0:
        return jsonify({"error": "Could not create player"}), 500
    return jsonify({"id": player_id, "username": username})


@app.route('/api/games', methods=['POST'])
def save_game():
    """Save a finished game sent by a client."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({"error": "Expected a JSON object"}), 400

    for field in REQUIRED_GAME_FIELDS:
        if field not in data:
            logger.warning("Rejected game: missing field %s", field)
            return jsonify({"error": f"Missing required field: {field}"}), 400

    if data['status'] not in FINISHED_STATUSES:
        return jsonify({"error": f"Game status must be one of {', '.join(FINISHED_STATUSES)}"}), 400

    try:
        record = GameRecord.from_dict(data)
    except (TypeError, ValueError) as e:
        return jsonify({"error": f"Malformed game record: {e}"}), 400
    record.id = None

    logger.info("Saving game from client %s", data.get('client_id', 'unknown'))
    record_id = get_db().save_game(record)
    if record_id < 0:
        return jsonify({"error": "Could not save game"}), 500

    return jsonify({
        "success": True,
        "message": "Game saved successfully",
        "id": record_id
    })


@app.route('/api/leaderboard', methods=['GET'])
def get_leaderboard():
    limit = request.args.get('limit', 10, type=int)
    results = get_db().get_leaderboard(limit)
    for rank, row in enumerate(results, start=1):
        row['rank'] = rank
    return jsonify({"leaderboard": results})


@app.route('/api/players/<int:player_id>/stats', methods=['GET'])
def get_player_stats(player_id):
    """Get the profile and recent games of a player."""
    db = get_db()
    stats = db.get_player_stats(player_id)
    if stats is None:
        return jsonify({"error": f"Unknown player: {player_id}"}), 404

    profile = stats.get_profile()
    profile['recent_games'] = [record.to_dict() for record in db.get_player_games(player_id, limit=10)]
    return jsonify(profile)


@app.errorhandler(500)
def internal_error(error):
    logger.error("Unhandled server error: %s", error)
    return jsonify({"error": "Internal server error"}), 500


def main():
    configure_logging()
    init_db()
    config = get_config()
    app.run(host='0.0.0.0', port=config.port, debug=config.debug)


if __name__ == '__main__':
    main()
