"""
初始数据脚本

在数据库迁移完成后写入种子数据（默认订阅计划目录）。
"""
import logging

from sqlmodel import Session

from paywall.core.db import engine, init_db

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def init() -> None:
    with Session(engine) as session:
        init_db(session)


def main() -> None:
    logger.info("Creating initial data")
    init()
    logger.info("Initial data created")


if __name__ == "__main__":  # pragma: no cover
    main()
