import logging

from flask import Blueprint, current_app

from locket_server.repository.mongo_helper import MongoRepo
from locket_server.utils.helpers import respond_success, respond_error

logger = logging.getLogger(__name__)

public_bp = Blueprint('public', __name__)


@public_bp.route('/health', methods=['GET'])
def health_check():
    """Health endpoint for load balancers and uptime checks.

    Returns 200 when the database answers a ping, 503 otherwise. No internal
    details are exposed.
    """
    if MongoRepo.ping():
        return respond_success({'status': 'ok', 'service': current_app.name, 'db': 'reachable'})
    logger.warning("Health check: database unreachable")
    return respond_error('error.server', status=503, kind='unavailable')
