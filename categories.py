from flask import Blueprint, request, jsonify
from marshmallow import Schema, fields, validate
from models import db, Category
from auth import roles_required, validate_request_data
import logging

categories_bp = Blueprint('categories', __name__)
logger = logging.getLogger(__name__)


class CategorySchema(Schema):
    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=100),
        error_messages={'required': 'Category name is required'}
    )
    description = fields.Str(validate=validate.Length(max=500), load_default='')


def serialize_category(category):
    return {
        'id': category.id,
        'name': category.name,
        'description': category.description or ''
    }


@categories_bp.route('', methods=['GET'])
def get_all_categories():
    categories = Category.query.order_by(Category.name).all()
    return jsonify({'categories': [serialize_category(c) for c in categories]}), 200

@categories_bp.route('', methods=['POST'])
@roles_required('admin', 'staff')
def create_category():
    is_valid, result = validate_request_data(CategorySchema, request.get_json(silent=True) or {})
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    name = result['name'].strip()
    if not name:
        return jsonify({'error': 'Category name is required'}), 400

    if Category.query.filter_by(name=name).first():
        return jsonify({'error': 'Category already exists'}), 409

    try:
        category = Category(name=name, description=result['description'])
        db.session.add(category)
        db.session.commit()

        logger.info(f"Category created: {name}")
        return jsonify({'category': serialize_category(category)}), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error creating category: {str(e)}", exc_info=True)
        return jsonify({'error': 'Internal server error'}), 500
