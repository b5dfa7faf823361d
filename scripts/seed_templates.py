"""
Seed Milestone Templates — built-in FULL / REDUCED / THREADED / INSULATION / PAINT.

Usage:
    python scripts/seed_templates.py                      # every project, development DB
    python scripts/seed_templates.py --project-code P-100 # one project
    python scripts/seed_templates.py --create-project P-100 --name "Unit 100"
    python scripts/seed_templates.py --env production

This script is idempotent — safe to run multiple times.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from roctrack import create_app
from roctrack.models import db
from roctrack.models.milestone_template import MilestoneTemplate
from roctrack.models.project import Project
from roctrack.services.template_registry import provision_project_templates


def ensure_project(code: str, name: str | None) -> Project:
    project = Project.query.filter_by(code=code).first()
    if project:
        print(f"  ⏭️  Project {code} exists")
        return project
    project = Project(code=code, name=name or code)
    db.session.add(project)
    db.session.flush()
    print(f"  ✅ Project {code} created")
    return project


def main():
    parser = argparse.ArgumentParser(description="Provision built-in milestone templates")
    parser.add_argument("--env", default="development", help="App environment")
    parser.add_argument("--project-code", help="Only provision this project")
    parser.add_argument("--create-project", metavar="CODE", help="Create the project first if missing")
    parser.add_argument("--name", help="Name for --create-project")
    parser.add_argument("--actor", default="seed-script", help="Audit actor")
    args = parser.parse_args()

    os.environ.setdefault("APP_ENV", args.env)
    app = create_app(args.env)

    with app.app_context():
        print("=" * 60)
        print("  SEED: Milestone Templates")
        print("=" * 60)

        if args.create_project:
            ensure_project(args.create_project, args.name)
            args.project_code = args.project_code or args.create_project

        query = Project.query.order_by(Project.code)
        if args.project_code:
            query = query.filter_by(code=args.project_code)
        projects = query.all()
        if not projects:
            print("\n  No matching projects.")
            return

        for project in projects:
            created = provision_project_templates(project.id, actor=args.actor)
            names = ", ".join(t.name for t in created) or "nothing new"
            print(f"  {project.code:20s} {names}")

        db.session.commit()

        print("\n" + "=" * 60)
        print("  SUMMARY")
        print("=" * 60)
        print(f"  Projects:  {len(projects)}")
        print(f"  Templates: {MilestoneTemplate.query.count()}")
        print("\n✅ Seed complete!")


if __name__ == "__main__":
    main()
