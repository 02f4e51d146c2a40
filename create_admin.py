"""
Create Super Admin User
Run this after setting up the database:
    python create_admin.py
"""
import psycopg2
from werkzeug.security import generate_password_hash
from config import Config
import models

config = Config()

def create_admin():
    print("=" * 50)
    print("CivicFlow - Admin Setup")
    print("=" * 50)

    email = (input("Enter admin email [superadmin@city.gov]: ").strip() or "superadmin@city.gov").lower()
    password = input("Enter admin password [admin123]: ").strip() or "admin123"
    name = input("Enter full name [Super Administrator]: ").strip() or "Super Administrator"

    if config.IS_PRODUCTION and password == "admin123":
        print("\nError: default password is not allowed in production.")
        return

    password_hash = generate_password_hash(password)

    try:
        models.ensure_schema_updates()
        conn = psycopg2.connect(**config.get_psycopg2_kwargs())
        cur = conn.cursor()

        cur.execute("SELECT id FROM users WHERE email = %s", (email,))
        if cur.fetchone():
            cur.execute(
                """UPDATE users SET password_hash = %s, name = %s, role = 'super_admin',
                       is_active = TRUE, updated_at = CURRENT_TIMESTAMP
                   WHERE email = %s""",
                (password_hash, name, email)
            )
            print(f"\nUser '{email}' updated successfully!")
        else:
            cur.execute(
                """INSERT INTO users (name, email, password_hash, role, is_active)
                   VALUES (%s, %s, %s, 'super_admin', TRUE)""",
                (name, email, password_hash)
            )
            print(f"\nUser '{email}' created successfully!")

        conn.commit()
        conn.close()

        print("\nLogin credentials:")
        print(f"  Email:    {email}")
        print(f"  Password: {password}")
        print("\nDevelopment start: python app.py")
        print("Production start:  python serve.py")
        print(f"API at: http://localhost:{config.PORT}/api")

    except psycopg2.Error as e:
        print(f"\nError: {e}")
        print("Make sure PostgreSQL is running and the database exists.")

if __name__ == '__main__':
    create_admin()
