"""
cli.py - 명령줄 인터페이스

kgflow <command> 형식으로 실행 (또는 python -m kgflow.cli).

Commands:
- setup-schema: Neo4j 스키마(constraints) 설정
- seed <sql_url>: 관계형 DB 의 Problem 정의로 그래프 구축
- ingest <ttl_path>: TTL 파일 적재
- verify: 그래프 구조 검증
- turn <user_id> <text>: 단일 턴 실행
- repl [user_id]: 대화형 REPL 모드
- clear-context <user_id>: 사용자 context 삭제
- health: 연결 상태 확인
- query <cypher>: Cypher 쿼리 실행 (디버그)
"""

from __future__ import annotations

import argparse
import logging
import sys
import uuid
from pathlib import Path

from dotenv import load_dotenv

from .construction import GraphConstructionService
from .core import Core, CoreConfig
from .solution import SolutionService
from .verification import VerificationService

# 환경변수 로드
load_dotenv()

# 로깅 설정
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Neo4j 경고 메시지 숨기기
logging.getLogger("neo4j.notifications").setLevel(logging.ERROR)
logging.getLogger("neo4j").setLevel(logging.ERROR)
logging.getLogger("httpx").setLevel(logging.ERROR)


def get_core(db_mode: str = "aura") -> Core:
    """Core 인스턴스 생성

    Args:
        db_mode: "aura" (Neo4j AuraDB) 또는 "local" (로컬 Neo4j)
    """
    config = CoreConfig.from_env(db_mode=db_mode)
    return Core(config)


def get_construction_service(core: Core) -> GraphConstructionService:
    return GraphConstructionService(core.driver, database=core.config.neo4j_database)


def get_verification_service(core: Core) -> VerificationService:
    return VerificationService(core.graph_store(), enabled=core.config.verify_enabled)


def get_solution_service(core: Core) -> SolutionService:
    return core.solution_service()


def _verify(core: Core) -> bool:
    ok = get_verification_service(core).verify_knowledge_graph()
    print("✅ 그래프 검증 통과" if ok else "⚠️ 그래프 검증 실패 (로그 확인)")
    return ok


def _print_stats(stats: dict) -> None:
    print("✅ 적재 완료:")
    for key, value in stats.items():
        print(f"  - {key}: {value}")


# =============================================================================
# Commands
# =============================================================================

def cmd_setup_schema(args):
    """Neo4j 스키마 설정"""
    db_mode = args.db
    print(f"🔧 Neo4j 스키마 설정 중... (DB: {db_mode})")

    with get_core(db_mode) as core:
        core.ensure_schema()
        ok = core.check_schema()

    print("✅ 스키마 설정 완료" if ok else "⚠️ 스키마 제약이 일부 없음")


def cmd_seed(args):
    """관계형 DB → Neo4j 그래프 구축"""
    db_mode = args.db
    print(f"🌱 Problem 정의 적재 중: {args.sql_url} (DB: {db_mode})")

    with get_core(db_mode) as core:
        service = get_construction_service(core)
        if args.clear:
            service.clear_knowledge_graph()
        stats = service.seed_from_database(args.sql_url)
        _print_stats(stats)
        if not args.no_verify:
            _verify(core)


def cmd_ingest(args):
    """TTL 파일 Neo4j에 적재"""
    ttl_path = args.ttl_path
    db_mode = args.db

    if not Path(ttl_path).exists():
        print(f"❌ 파일을 찾을 수 없습니다: {ttl_path}")
        sys.exit(1)

    print(f"📥 TTL 파일 적재 중: {ttl_path} (DB: {db_mode})")

    with get_core(db_mode) as core:
        stats = get_construction_service(core).ingest_ttl(ttl_path)
        _print_stats(stats)
        if not args.no_verify:
            _verify(core)


def cmd_verify(args):
    """그래프 구조 검증"""
    with get_core(args.db) as core:
        reports = get_verification_service(core).verify_all()

    if not reports:
        print("⚠️ Problem 이 없습니다.")
        sys.exit(1)

    for problem_id, report in reports.items():
        emoji = "✅" if report.valid else "❌"
        print(f"  {emoji} {problem_id} ({report.problem_type}): 종료 Step {len(report.end_steps)}개")
        for issue in report.issues:
            print(f"      - {issue}")

    if not all(report.valid for report in reports.values()):
        sys.exit(1)


def cmd_turn(args):
    """단일 턴 실행"""
    with get_core(args.db) as core:
        service = get_solution_service(core)
        response = service.process_query(args.user_id, args.text)
        context = service.context_store.get(args.user_id)

    print(f"\n👤 User: {args.text}")
    print(f"🤖 Bot: {response}")
    print(f"\n📝 Context: {context}")


def cmd_repl(args):
    """대화형 REPL 모드"""
    user_id = args.user_id or str(uuid.uuid4())[:8]
    db_mode = args.db

    print(f"🚀 KGFlow REPL 시작 (사용자: {user_id})")
    print(f"🗄️  Neo4j: {db_mode.upper()} 모드")
    print("종료하려면 'quit' 또는 'exit'를 입력하세요.\n")

    with get_core(db_mode) as core:
        service = get_solution_service(core)

        while True:
            try:
                user_input = input("👤 You: ").strip()

                if not user_input:
                    continue

                if user_input.lower() in ["quit", "exit", "q"]:
                    print("👋 종료합니다.")
                    break

                if user_input.lower() == "/context":
                    print(f"\n📊 Context: {service.context_store.get(user_id)}\n")
                    continue

                if user_input.lower() == "/reset":
                    service.clear_context(user_id)
                    print("🔄 context 가 초기화되었습니다.\n")
                    continue

                response = service.process_query(user_id, user_input)
                print(f"🤖 Bot: {response}\n")

            except (KeyboardInterrupt, EOFError):
                print("\n👋 종료합니다.")
                break
            except Exception as e:
                logger.error(f"오류 발생: {e}")
                print(f"❌ 오류가 발생했습니다: {e}\n")


def cmd_clear_context(args):
    """사용자 context 삭제"""
    with get_core(args.db) as core:
        core.context_store().clear(args.user_id)
    print(f"🗑️ {args.user_id} context 삭제 완료")


def cmd_health(args):
    """연결 상태 확인"""
    db_mode = args.db
    print(f"🏥 연결 상태 확인 중... (DB: {db_mode})")

    with get_core(db_mode) as core:
        status = core.health_check()

    for service, value in status.items():
        if isinstance(value, bool):
            emoji = "✅" if value else "❌"
            print(f"  {emoji} {service}: {'OK' if value else 'Failed'}")
        else:
            print(f"  📊 {service}: {value}")


def cmd_query(args):
    """임의의 Cypher 쿼리 실행 (디버그용)"""
    with get_core(args.db) as core:
        results = core.run_query(args.query)

    print(f"\n📊 Results ({len(results)} rows):")
    for r in results[:20]:
        print(f"  {r}")

    if len(results) > 20:
        print(f"  ... and {len(results) - 20} more rows")


# =============================================================================
# Main
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kgflow",
        description="KGFlow 솔루션 그래프 실행 CLI"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # 공통 --db 옵션을 위한 부모 parser
    db_parent = argparse.ArgumentParser(add_help=False)
    db_parent.add_argument(
        "--db", choices=["aura", "local"], default="aura",
        help="Neo4j DB 모드: aura (AuraDB 클라우드) 또는 local (로컬 Neo4j) (기본값: aura)"
    )

    sub_schema = subparsers.add_parser("setup-schema", parents=[db_parent], help="Neo4j 스키마 설정")
    sub_schema.set_defaults(func=cmd_setup_schema)

    sub_seed = subparsers.add_parser("seed", parents=[db_parent], help="관계형 DB 에서 그래프 구축")
    sub_seed.add_argument("sql_url", help="SQLAlchemy DB URL")
    sub_seed.add_argument("--clear", action="store_true", help="기존 그래프 삭제 후 구축")
    sub_seed.add_argument("--no-verify", action="store_true", help="구축 후 검증 스킵")
    sub_seed.set_defaults(func=cmd_seed)

    sub_ingest = subparsers.add_parser("ingest", parents=[db_parent], help="TTL 파일 적재")
    sub_ingest.add_argument("ttl_path", help="TTL 파일 경로")
    sub_ingest.add_argument("--no-verify", action="store_true", help="적재 후 검증 스킵")
    sub_ingest.set_defaults(func=cmd_ingest)

    sub_verify = subparsers.add_parser("verify", parents=[db_parent], help="그래프 구조 검증")
    sub_verify.set_defaults(func=cmd_verify)

    sub_turn = subparsers.add_parser("turn", parents=[db_parent], help="단일 턴 실행")
    sub_turn.add_argument("user_id", help="사용자 ID")
    sub_turn.add_argument("text", help="사용자 입력")
    sub_turn.set_defaults(func=cmd_turn)

    sub_repl = subparsers.add_parser("repl", parents=[db_parent], help="대화형 REPL 모드")
    sub_repl.add_argument("user_id", nargs="?", help="사용자 ID (생략시 자동 생성)")
    sub_repl.set_defaults(func=cmd_repl)

    sub_clear = subparsers.add_parser("clear-context", parents=[db_parent], help="사용자 context 삭제")
    sub_clear.add_argument("user_id", help="사용자 ID")
    sub_clear.set_defaults(func=cmd_clear_context)

    sub_health = subparsers.add_parser("health", parents=[db_parent], help="연결 상태 확인")
    sub_health.set_defaults(func=cmd_health)

    sub_query = subparsers.add_parser("query", parents=[db_parent], help="Cypher 쿼리 실행 (디버그)")
    sub_query.add_argument("query", help="Cypher 쿼리")
    sub_query.set_defaults(func=cmd_query)

    return parser


def main(argv: list[str] | None = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
