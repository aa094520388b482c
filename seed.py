"""
從 Canvas 匯出的 CSV 匯入 capstone 學生名單

用法:
    python seed.py data/ProjectGroups.csv [--create-teams]

CSV 欄位: login_id, name, group_name (可省略)
"""
import argparse
import csv
import sys
from models import db, Team
from registered_students import bulk_upsert_students, normalize_upi


def read_students_from_csv(path):
    """讀取 CSV,同一個 UPI 只保留第一筆"""
    students = []
    seen = set()

    with open(path, newline='', encoding='utf-8-sig') as f:
        for row in csv.DictReader(f):
            upi = normalize_upi(row.get('login_id'))
            name = (row.get('name') or '').strip()
            if not upi or not name or upi in seen:
                continue

            seen.add(upi)
            students.append({
                'upi': upi,
                'name': name,
                'teamName': (row.get('group_name') or '').strip() or None
            })

    return students


def create_missing_teams(students):
    """名單上有但資料庫沒有的隊伍一起建立"""
    names = {s['teamName'] for s in students if s['teamName']}
    existing = {t.name for t in Team.query.filter(Team.name.in_(names)).all()} if names else set()

    created = 0
    for name in sorted(names - existing):
        db.session.add(Team(name=name[:50]))
        created += 1

    db.session.commit()
    return created


def seed(path, create_teams=False):
    students = read_students_from_csv(path)
    if not students:
        print("CSV 裡沒有有效的學生資料")
        return False

    print(f"讀到 {len(students)} 位學生,匯入中...")
    ok, result = bulk_upsert_students(students)
    if not ok:
        print(f"匯入失敗: {result}")
        return False

    print(f"新增 {result['inserted']} 筆,更新 {result['updated']} 筆,略過 {result['skipped']} 筆")

    if create_teams:
        print(f"建立 {create_missing_teams(students)} 個隊伍")

    return True


def main(argv=None):
    parser = argparse.ArgumentParser(description='Import registered capstone students from CSV')
    parser.add_argument('csv_path')
    parser.add_argument('--create-teams', action='store_true',
                        help='create teams listed in the group_name column')
    args = parser.parse_args(argv)

    from app import app

    with app.app_context():
        db.create_all()
        return 0 if seed(args.csv_path, args.create_teams) else 1


if __name__ == '__main__':
    sys.exit(main())
