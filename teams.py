from flask import Blueprint, request, jsonify
from marshmallow import Schema, fields, validate
from models import db, Team, User
from auth import roles_required, validate_request_data
import csv
import io
import logging

teams_bp = Blueprint('teams', __name__)
logger = logging.getLogger(__name__)

# CSV 第一列如果是這些欄位名稱就當作標題跳過
CSV_HEADER_NAMES = ('teamname', 'team name', 'team', 'name')

# ============================================
# Input Validation Schemas
# ============================================

class CreateTeamSchema(Schema):
    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=50),
        error_messages={'required': 'Team name is required'}
    )
    canvasGroupId = fields.Str(allow_none=True)

# ============================================
# 輔助函數
# ============================================

def serialize_team(team):
    return {
        'id': team.id,
        'name': team.name,
        'canvasGroupId': team.canvas_group_id,
        'members': [
            {'id': m.id, 'name': m.name, 'email': m.email}
            for m in team.members
        ],
        'project': team.project.id if team.project else None,
        'createdAt': team.created_at.isoformat() if team.created_at else None
    }

def add_user_to_team(user, team):
    """把使用者加入隊伍,隊伍已有專案時一起連結"""
    user.team = team
    if team.project:
        user.project_id = team.project.id

def parse_teams_csv(text):
    """
    解析隊伍 CSV

    每一列: teamName, email1, email2, ...

    Returns:
        list: [{'name': str, 'memberEmails': [str]}]
    """
    teams = []
    reader = csv.reader(io.StringIO(text))
    for index, row in enumerate(reader):
        cells = [cell.strip() for cell in row]
        if not any(cells):
            continue
        if index == 0 and cells[0].lower() in CSV_HEADER_NAMES:
            continue
        teams.append({
            'name': cells[0],
            'memberEmails': [email for email in cells[1:] if email]
        })
    return teams

def read_teams_payload():
    """
    從 multipart 檔案 (欄位 file) 或 JSON {teams: [...]} 取得隊伍資料

    Returns:
        list | None: 格式錯誤時回傳 None
    """
    upload = request.files.get('file')
    if upload:
        try:
            text = upload.read().decode('utf-8-sig')
        except UnicodeDecodeError:
            return None
        return parse_teams_csv(text)

    data = request.get_json(silent=True) or {}
    teams = data.get('teams')
    if not isinstance(teams, list):
        return None
    return teams

def create_team_from_row(row):
    """
    建立一個隊伍,回傳 (team, errors)

    找不到的 email 記錄在 errors,不影響建立隊伍
    """
    errors = []
    name = (row.get('name') or '').strip() if isinstance(row, dict) else ''
    if not name:
        return None, [{'row': row, 'error': 'Team name is required'}]
    if len(name) > 50:
        return None, [{'row': row, 'error': 'Team name must be at most 50 characters'}]

    if Team.query.filter_by(name=name, canvas_group_id=None).first():
        return None, [{'row': row, 'error': f'Team already exists: {name}'}]

    team = Team(name=name)
    db.session.add(team)

    emails = row.get('memberEmails') or []
    if not isinstance(emails, list):
        emails = []

    for email in emails:
        user = User.query.filter_by(email=str(email).strip()).first()
        if user:
            add_user_to_team(user, team)
        else:
            errors.append({'row': row, 'error': f'User not found: {email}'})

    return team, errors

# ============================================
# 隊伍 API (staff / admin)
# ============================================

@teams_bp.route('', methods=['GET'])
@roles_required('admin', 'staff')
def get_all_teams():
    teams = Team.query.order_by(Team.name).all()
    return jsonify({'teams': [serialize_team(t) for t in teams]}), 200

@teams_bp.route('/<int:team_id>', methods=['GET'])
@roles_required('admin', 'staff')
def get_team(team_id):
    team = db.session.get(Team, team_id)
    if not team:
        return jsonify({'error': 'Team not found'}), 404
    return jsonify({'team': serialize_team(team)}), 200

@teams_bp.route('', methods=['POST'])
@roles_required('admin', 'staff')
def create_team():
    """建立空隊伍 (成員之後再分配)"""
    is_valid, result = validate_request_data(CreateTeamSchema, request.get_json(silent=True) or {})
    if not is_valid:
        return jsonify({'error': 'Team name is required', 'details': result}), 400

    name = result['name'].strip()
    if not name:
        return jsonify({'error': 'Team name is required'}), 400

    canvas_group_id = result.get('canvasGroupId')
    if Team.query.filter_by(name=name, canvas_group_id=canvas_group_id).first():
        return jsonify({'error': 'Team already exists'}), 409

    try:
        team = Team(name=name, canvas_group_id=canvas_group_id)
        db.session.add(team)
        db.session.commit()

        logger.info(f"Team created: {team.id} ({team.name})")
        return jsonify({'message': 'Team created successfully', 'team': serialize_team(team)}), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error creating team: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to create team'}), 500

@teams_bp.route('/upload-csv', methods=['POST'])
@roles_required('admin', 'staff')
def upload_teams_csv():
    """
    批次建立隊伍

    每一列的錯誤會收集起來一起回傳,成功的隊伍照樣建立
    """
    rows = read_teams_payload()
    if rows is None:
        return jsonify({'error': 'Invalid CSV data format'}), 400

    created = []
    errors = []

    try:
        for row in rows:
            team, row_errors = create_team_from_row(row)
            errors.extend(row_errors)
            if team:
                db.session.flush()
                created.append(team)

        db.session.commit()

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error uploading teams CSV: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to upload teams CSV'}), 500

    logger.info(f"Teams upload: {len(created)} created, {len(errors)} errors")

    response = {
        'message': f'Created {len(created)} teams',
        'createdTeams': [serialize_team(t) for t in created]
    }
    if errors:
        response['errors'] = errors
    return jsonify(response), 200

@teams_bp.route('/<int:team_id>', methods=['DELETE'])
@roles_required('admin', 'staff')
def delete_team(team_id):
    """刪除隊伍,成員的 team 欄位清空,專案保留但不再屬於隊伍"""
    team = db.session.get(Team, team_id)
    if not team:
        return jsonify({'error': 'Team not found'}), 404

    try:
        User.query.filter_by(team_id=team_id).update({'team_id': None})
        if team.project:
            team.project.team_id = None

        db.session.delete(team)
        db.session.commit()

        logger.info(f"Team {team_id} deleted")
        return jsonify({'message': 'Team deleted successfully'}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error deleting team {team_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to delete team'}), 500
