"""Seed database with demo data."""
from servicedesk.database import Base, SessionLocal, engine
from servicedesk.models import Branch, Department, ServiceCategory, User
import uuid


def seed():
    """Seed database with demo data."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        if db.query(Branch).first():
            print("Database already seeded, nothing to do")
            return

        # Branches: equal approval authority, parent link is informational
        primary = Branch(
            id=uuid.UUID('00000000-0000-0000-0000-000000000001'),
            code="KC-JKT",
            name="Kantor Cabang Jakarta",
            kind="PRIMARY",
        )
        db.add(primary)
        db.flush()
        sub = Branch(
            id=uuid.UUID('00000000-0000-0000-0000-000000000002'),
            code="KCP-BGR",
            name="Kantor Cabang Pembantu Bogor",
            kind="SUB",
            parent_id=primary.id,
        )
        db.add(sub)

        it_dept = Department(
            id=uuid.UUID('00000000-0000-0000-0000-000000000011'),
            code="IT",
            name="Information Technology",
        )
        ops_dept = Department(
            id=uuid.UUID('00000000-0000-0000-0000-000000000012'),
            code="DUKOPS",
            name="Dukungan dan Operasional",
        )
        db.add_all([it_dept, ops_dept])
        db.flush()

        categories_data = [
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000021'),
                'name': 'Network Access',
                'department_id': it_dept.id,
                'requires_approval': True,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000022'),
                'name': 'Password Reset',
                'department_id': it_dept.id,
                'requires_approval': False,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000023'),
                'name': 'KASDA Treasury',
                'department_id': ops_dept.id,
                'requires_approval': True,
                'requires_compliance_approval': True,
                'is_government': True,
            },
        ]
        for category_data in categories_data:
            db.add(ServiceCategory(**category_data))

        users_data = [
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000101'),
                'username': 'admin',
                'name': 'Administrator',
                'role': 'admin',
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000102'),
                'username': 'manager.jkt',
                'name': 'Manager Jakarta',
                'role': 'manager',
                'branch_id': primary.id,
                'is_authorized_reviewer': True,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000103'),
                'username': 'manager.bgr',
                'name': 'Manager Bogor',
                'role': 'manager',
                'branch_id': sub.id,
                'is_authorized_reviewer': True,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000104'),
                'username': 'reviewer.dukops',
                'name': 'Compliance Reviewer',
                'role': 'manager',
                'department_id': ops_dept.id,
                'is_authorized_reviewer': True,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000105'),
                'username': 'teller.jkt',
                'name': 'Teller Jakarta',
                'role': 'requester',
                'branch_id': primary.id,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000106'),
                'username': 'teller.bgr',
                'name': 'Teller Bogor',
                'role': 'requester',
                'branch_id': sub.id,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000107'),
                'username': 'tech.it1',
                'name': 'IT Technician 1',
                'role': 'technician',
                'department_id': it_dept.id,
                'workload_capacity': 10,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000108'),
                'username': 'tech.it2',
                'name': 'IT Technician 2',
                'role': 'technician',
                'department_id': it_dept.id,
                'workload_capacity': 8,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000109'),
                'username': 'tech.ops',
                'name': 'Operations Technician',
                'role': 'technician',
                'department_id': ops_dept.id,
                'workload_capacity': 10,
            },
        ]
        for user_data in users_data:
            db.add(User(**user_data))

        db.commit()
        print("Demo data seeded:")
        print(f"  - 2 branches ({primary.code} PRIMARY, {sub.code} SUB)")
        print(f"  - {len(categories_data)} service categories")
        print(f"  - {len(users_data)} users")

    except Exception as e:
        print(f"Error seeding database: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
