"""One-time bootstrap script to create an admin user (and optionally a warehouse).

Usage:
  python scripts/create_admin.py --username admin --email admin@example.com --password secret \
      --warehouse-code BKK --warehouse-name "Bangkok Central"
Or provide via env: ADMIN_USERNAME, ADMIN_EMAIL, ADMIN_PASSWORD, WAREHOUSE_CODE, WAREHOUSE_NAME
"""
import os
import argparse
from getpass import getpass

from stock_ledger.app.db import SessionLocal, create_db_and_tables
from stock_ledger.app import models
from stock_ledger.app.security import get_password_hash, ADMIN_ROLE, MIN_PASSWORD_LENGTH


def bootstrap(db, username, email, password, warehouse_code=None, warehouse_name=None):
    """
    Create the warehouse (if asked and missing) and the admin user.

    Returns (user, created) where created is False for an existing username.
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    warehouse = None
    if warehouse_code:
        warehouse = db.query(models.Warehouse).filter(models.Warehouse.code == warehouse_code).first()
        if warehouse is None:
            warehouse = models.Warehouse(code=warehouse_code, name=warehouse_name or warehouse_code)
            db.add(warehouse)
            db.flush()

    existing = db.query(models.User).filter(models.User.username == username).first()
    if existing:
        db.commit()
        return existing, False

    user = models.User(
        full_name='Admin',
        email=email,
        username=username,
        password_hash=get_password_hash(password),
        role=ADMIN_ROLE,
        warehouse_id=warehouse.id if warehouse else None,
    )
    db.add(user)
    db.commit()
    return user, True


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument('--username')
    parser.add_argument('--email')
    parser.add_argument('--password')
    parser.add_argument('--warehouse-code')
    parser.add_argument('--warehouse-name')
    args = parser.parse_args()

    username = args.username or os.getenv('ADMIN_USERNAME')
    email = args.email or os.getenv('ADMIN_EMAIL')
    password = args.password or os.getenv('ADMIN_PASSWORD')
    warehouse_code = args.warehouse_code or os.getenv('WAREHOUSE_CODE')
    warehouse_name = args.warehouse_name or os.getenv('WAREHOUSE_NAME')
    if not username:
        username = input('Username: ').strip()
    if not email:
        email = input('Email: ').strip()
    if not password:
        password = getpass('Password: ')

    create_db_and_tables()
    db = SessionLocal()
    try:
        user, created = bootstrap(db, username, email, password, warehouse_code, warehouse_name)
        if created:
            print('Created admin user:', username)
        else:
            print('User already exists:', username)
    finally:
        db.close()


if __name__ == '__main__':
    main()
