import pytest
from decimal import Decimal

from repairpos import create_app
from repairpos.database import get_session, create_all, drop_all
from repairpos.models import (
    Category, Product, Customer, CashRegister, CashRegisterStatus, RepairOrder, RepairStatus
)


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestingConfig')
    return app


@pytest.fixture(scope='function')
def database(app):
    """Fresh in-memory schema for every test."""
    with app.app_context():
        create_all()
        yield
        get_session().remove()
        drop_all()


@pytest.fixture(scope='function')
def client(app, database):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(database):
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope='function')
def category(session):
    category = Category(name='Repuestos')
    session.add(category)
    session.commit()
    return category


@pytest.fixture(scope='function')
def product(session, category):
    """Stocked product: 10 units, low-stock threshold 2."""
    product = Product(
        sku='PANT-A10',
        name='Pantalla Galaxy A10',
        category_id=category.id,
        sale_price=Decimal('100.00'),
        purchase_price=Decimal('60.00'),
        wholesale_price=Decimal('80.00'),
        stock_quantity=10,
        min_stock=2,
        is_active=True
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def second_product(session, category):
    product = Product(
        sku='BAT-IP11',
        name='Batería iPhone 11',
        category_id=category.id,
        sale_price=Decimal('50.00'),
        purchase_price=Decimal('30.00'),
        stock_quantity=5,
        min_stock=1,
        is_active=True
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def service_product(session):
    """Non-stocked service item."""
    product = Product(
        sku='SRV-DIAG',
        name='Diagnóstico',
        sale_price=Decimal('20.00'),
        stock_quantity=0,
        min_stock=0,
        is_service=True,
        is_active=True
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def customer(session):
    """Customer with a 1000 credit limit and no debt."""
    customer = Customer(
        name='Ana Gómez',
        phone='555-0101',
        credit_limit=Decimal('1000.00'),
        current_balance=Decimal('0.00'),
        is_wholesale=False
    )
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def wholesale_customer(session):
    customer = Customer(
        name='Celulares del Centro',
        credit_limit=Decimal('0.00'),
        is_wholesale=True
    )
    session.add(customer)
    session.commit()
    return customer


@pytest.fixture(scope='function')
def open_register(session):
    register = CashRegister(
        status=CashRegisterStatus.OPEN,
        opened_by='caja1',
        opening_amount=Decimal('100.00')
    )
    session.add(register)
    session.commit()
    return register


@pytest.fixture(scope='function')
def repair(session, customer):
    """Repair ready for delivery, estimated at 150."""
    repair = RepairOrder(
        customer_id=customer.id,
        device='Motorola G8',
        issue='No carga',
        status=RepairStatus.READY,
        estimated_cost=Decimal('150.00'),
        labor_cost=Decimal('100.00'),
        parts_cost=Decimal('50.00')
    )
    session.add(repair)
    session.commit()
    return repair


@pytest.fixture(scope='function')
def second_repair(session, customer):
    repair = RepairOrder(
        customer_id=customer.id,
        device='iPhone 11',
        issue='Pantalla rota',
        status=RepairStatus.READY,
        estimated_cost=Decimal('50.00')
    )
    session.add(repair)
    session.commit()
    return repair
