"""
Flask-Login integration for CloudHub.
"""

from flask import current_app, jsonify
from flask_login import LoginManager, UserMixin

login_manager = LoginManager()
login_manager.session_protection = 'basic'


class User(UserMixin):
    """Wraps a users row from the account store."""

    def __init__(self, row):
        self.id = row['id']
        self.email = row['email']
        self.name = row['name']
        self._is_active = bool(row['is_active'])

    # Flask-Login requires this to be a property
    @property
    def is_active(self):
        return self._is_active

    def get_id(self):
        return str(self.id)

    def to_dict(self):
        return {'id': self.id, 'email': self.email, 'name': self.name}


@login_manager.user_loader
def load_user(user_id):
    row = current_app.account_store.get_user_by_id(int(user_id))
    return User(row) if row else None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'Authentication required'}), 401
