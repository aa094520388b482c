from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()

# 角色和列舉值 (其他模組的 validation 也用這些)
ROLES = ('visitor', 'capstoneStudent', 'staff', 'admin')
SEMESTER_TERMS = ('S1', 'S2')
AWARD_CATEGORIES = (
    'Innovation',
    'Design',
    'Technical Excellence',
    'Social Impact',
    'Best Overall',
    "People's Choice",
)
USER_LINK_TYPES = ('github', 'linkedin', 'personalWebsite')
PROJECT_LINK_TYPES = ('github', 'deployedWebsite', 'videoDemoUrl')

MAX_TAGS_PER_PROJECT = 5

# ============================================
# 多對多關聯表
# ============================================

project_tags = db.Table('project_tags',
    db.Column('project_id', db.Integer, db.ForeignKey('project.id'), primary_key=True),
    db.Column('tag_id', db.Integer, db.ForeignKey('tag.id'), primary_key=True),
    db.Column('created_at', db.DateTime, default=datetime.utcnow)
)

project_awards = db.Table('project_awards',
    db.Column('project_id', db.Integer, db.ForeignKey('project.id'), primary_key=True),
    db.Column('award_id', db.Integer, db.ForeignKey('award.id'), primary_key=True)
)

# 按讚 (計數另外存在 Project.likes_count)
project_likes = db.Table('project_likes',
    db.Column('user_id', db.Integer, db.ForeignKey('user.id'), primary_key=True),
    db.Column('project_id', db.Integer, db.ForeignKey('project.id'), primary_key=True),
    db.Column('created_at', db.DateTime, default=datetime.utcnow)
)

user_favorites = db.Table('user_favorites',
    db.Column('user_id', db.Integer, db.ForeignKey('user.id'), primary_key=True),
    db.Column('project_id', db.Integer, db.ForeignKey('project.id'), primary_key=True),
    db.Column('created_at', db.DateTime, default=datetime.utcnow)
)

# ============================================
# 1. User 模型
# ============================================
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(30), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(225), nullable=False)
    profile_picture = db.Column(db.String(500), default='')
    role = db.Column(db.String(20), nullable=False, default='visitor')  # visitor, capstoneStudent, staff, admin
    links = db.Column(db.JSON, default=list)

    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), nullable=True)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=True)

    last_login = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # 關聯
    team = db.relationship('Team', backref=db.backref('members', lazy=True), foreign_keys=[team_id])
    project = db.relationship('Project', foreign_keys=[project_id])
    comments = db.relationship('Comment', backref='author', lazy=True, cascade='all,delete-orphan')
    liked_projects = db.relationship('Project', secondary=project_likes, lazy=True)
    favorites = db.relationship('Project', secondary=user_favorites, lazy=True)

    __table_args__ = (
        db.Index('idx_user_role', 'role'),
    )

# ============================================
# 2. Team 模型
# ============================================
class Team(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), nullable=False)
    # Canvas 匯出的 group id (同名隊伍用它區分)
    canvas_group_id = db.Column(db.String(100), index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 一個隊伍最多一個專案 (Project.team_id unique)
    project = db.relationship('Project', backref='team', uselist=False)

    __table_args__ = (
        db.UniqueConstraint('name', 'canvas_group_id', name='unique_team_canvas_group'),
    )

# ============================================
# 3. Semester 模型
# ============================================
class Semester(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    year = db.Column(db.Integer, nullable=False)
    semester = db.Column(db.String(2), nullable=False)  # S1, S2
    is_active = db.Column(db.Boolean, default=True)
    start_date = db.Column(db.DateTime)
    end_date = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    projects = db.relationship('Project', backref='semester', lazy=True)

    __table_args__ = (
        db.UniqueConstraint('year', 'semester', name='unique_semester_term'),
    )

# ============================================
# 4. Category 模型
# ============================================
class Category(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    description = db.Column(db.String(500), default='')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    projects = db.relationship('Project', backref='category', lazy=True)

# ============================================
# 5. Project 模型
# ============================================
class Project(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default='')

    team_id = db.Column(db.Integer, db.ForeignKey('team.id'), unique=True, nullable=True)
    semester_id = db.Column(db.Integer, db.ForeignKey('semester.id'), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey('category.id'), nullable=True)

    links = db.Column(db.JSON, default=list)
    image_urls = db.Column(db.JSON, default=list)
    likes_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 關聯
    tags = db.relationship('Tag', secondary=project_tags, backref=db.backref('projects', lazy=True),
                           order_by='Tag.name')
    awards = db.relationship('Award', secondary=project_awards, backref=db.backref('projects', lazy=True))
    comments = db.relationship('Comment', backref='project', lazy=True, cascade='all,delete-orphan')

    __table_args__ = (
        db.Index('idx_project_semester', 'semester_id'),
        db.Index('idx_project_category', 'category_id'),
    )

# ============================================
# 6. Tag 模型
# ============================================
class Tag(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False, index=True)
    # 綁定這個標籤的專案數量,歸零時標籤會被刪除
    mentions = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

# ============================================
# 7. Comment 模型
# ============================================
class Comment(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    content = db.Column(db.String(1000), nullable=False)
    author_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('idx_comment_project', 'project_id'),
        db.Index('idx_comment_author', 'author_id'),
    )

# ============================================
# 8. Award 模型
# ============================================
class Award(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    icon_url = db.Column(db.String(500))
    description = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(50), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index('idx_award_category', 'category'),
    )

# ============================================
# 9. RegisteredStudent 模型
# ============================================
class RegisteredStudent(db.Model):
    """
    已登記的 capstone 學生名單

    註冊時用 email 的 UPI 比對這張表決定是否為 capstoneStudent
    """
    id = db.Column(db.Integer, primary_key=True)
    upi = db.Column(db.String(8), unique=True, nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    team_name = db.Column(db.String(100))

# ============================================
# 10. Token 模型 (magic link 註冊 / 重設密碼)
# ============================================
class RegistrationToken(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    name = db.Column(db.String(30), nullable=False)
    password_hash = db.Column(db.String(225), nullable=False)
    token_hash = db.Column(db.String(64), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    used_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class PasswordResetToken(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    used_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
