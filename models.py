from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime

db = SQLAlchemy()


class User(UserMixin, db.Model):
    """Account owning a company profile and its invoices"""
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    email = db.Column(db.String(200), nullable=True)
    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    company_profile = db.relationship('CompanyProfile', back_populates='user', uselist=False)
    invoices = db.relationship('Invoice', back_populates='user', lazy='dynamic')

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    @property
    def is_active(self):
        return self.active


class CompanyProfile(db.Model):
    """Issuing company (the seller on every invoice of its user)"""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, unique=True)
    company_name = db.Column(db.String(200), nullable=True)
    full_name = db.Column(db.String(200), nullable=True)
    address = db.Column(db.Text, nullable=True)  # free text, e.g. "10 rue X, 75001 Paris"
    phone = db.Column(db.String(50), nullable=True)
    email = db.Column(db.String(200), nullable=True)
    siret = db.Column(db.String(20), nullable=True)
    vat_number = db.Column(db.String(30), nullable=True)  # TVA intracommunautaire
    iban = db.Column(db.String(50), nullable=True)
    bic = db.Column(db.String(20), nullable=True)

    user = db.relationship('User', back_populates='company_profile')

    def to_record(self):
        """Plain mapping consumed by the e-invoice mapper."""
        return {
            'company_name': self.company_name,
            'full_name': self.full_name,
            'address': self.address,
            'phone': self.phone,
            'email': self.email,
            'account_email': self.user.email if self.user else None,
            'siret': self.siret,
            'vat_number': self.vat_number,
            'iban': self.iban,
            'bic': self.bic,
        }


class Invoice(db.Model):
    """Invoice header; client data is stored denormalized on the invoice"""
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    invoice_number = db.Column(db.String(50), nullable=True)
    issue_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    type_code = db.Column(db.String(3), default='380')  # 380 invoice, 381 credit note

    client_name = db.Column(db.String(200), nullable=True)
    client_email = db.Column(db.String(200), nullable=True)
    client_phone = db.Column(db.String(50), nullable=True)
    client_address = db.Column(db.Text, nullable=True)
    client_siret = db.Column(db.String(20), nullable=True)

    subtotal = db.Column(db.Float, nullable=True)
    tax_rate = db.Column(db.Float, nullable=True)
    tax_amount = db.Column(db.Float, nullable=True)
    total = db.Column(db.Float, nullable=True)

    payment_terms = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', back_populates='invoices')
    items = db.relationship('InvoiceItem', back_populates='invoice', cascade='all, delete-orphan',
                            order_by='InvoiceItem.sort_order')

    def to_record(self):
        return {
            'invoice_number': self.invoice_number,
            'issue_date': self.issue_date,
            'due_date': self.due_date,
            'type_code': self.type_code,
            'client_name': self.client_name,
            'client_email': self.client_email,
            'client_phone': self.client_phone,
            'client_address': self.client_address,
            'client_siret': self.client_siret,
            'subtotal': self.subtotal,
            'tax_rate': self.tax_rate,
            'tax_amount': self.tax_amount,
            'total': self.total,
            'payment_terms': self.payment_terms,
            'notes': self.notes,
        }


class InvoiceItem(db.Model):
    """Invoice line; total is the stored (possibly stale) quantity * unit_price"""
    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey('invoice.id'), nullable=False)
    description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Float, nullable=False, default=1)
    unit_price = db.Column(db.Float, nullable=False, default=0)
    total = db.Column(db.Float, nullable=True)
    vat_rate = db.Column(db.Float, nullable=True)  # None = invoice tax_rate
    unit_code = db.Column(db.String(3), nullable=True)
    sort_order = db.Column(db.Integer, default=0)

    invoice = db.relationship('Invoice', back_populates='items')

    def to_record(self):
        return {
            'description': self.description,
            'quantity': self.quantity,
            'unit_price': self.unit_price,
            'total': self.total,
            'vat_rate': self.vat_rate,
            'unit_code': self.unit_code,
        }
