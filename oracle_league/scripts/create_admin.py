from oracle_league.core.security import create_access_token
from oracle_league.db.models.user import User
from oracle_league.db.session import SessionLocal, init_db


def create_admin_user(username: str = "ADMINISTRADOR"):
    init_db()
    db = SessionLocal()

    try:
        # Comprobar si ya existe
        user = db.query(User).filter(User.username == username).first()

        if user:
            print("⚠️  Ya existe un usuario con ese username")
            print("➡️  Usuario:", user.username)
            print("➡️  Rol:", user.role)
        else:
            user = User(username=username, display_name="Administrador", role="admin")
            db.add(user)
            db.commit()
            print("✅ Usuario administrador creado correctamente")
            print("➡️  Usuario:", username)

        # Token de operador para llamar a /admin mientras no haya servicio de identidad
        print("🔑 Token:", create_access_token({"sub": str(user.id)}))

    except Exception as e:
        db.rollback()
        print("❌ Error creando el usuario administrador")
        print(e)

    finally:
        db.close()


if __name__ == "__main__":
    create_admin_user()
