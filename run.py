#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Главный скрипт запуска квеста с ботами-персонажами
Поддерживает параметры командной строки и настройку через .env
"""

import os
import sys
import argparse
import asyncio
import logging
from pathlib import Path
from dotenv import load_dotenv


def parse_arguments():
    """Парсинг аргументов командной строки"""
    parser = argparse.ArgumentParser(
        description='Telegram-квест с несколькими ботами-персонажами',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Примеры использования:
  python run.py                       # Обычный запуск
  python run.py --check               # Только проверка конфигурации и сценариев
  python run.py --env custom.env      # Использовать другой .env файл
  python run.py --config quest.yaml   # Использовать другой файл конфигурации
  python run.py --debug               # Запуск в режиме отладки
        """
    )

    parser.add_argument('--check', action='store_true',
                       help='Только проверить конфигурацию без запуска')
    parser.add_argument('--env', type=str, default='.env',
                       help='Путь к файлу с переменными окружения')
    parser.add_argument('--config', type=str, default=None,
                       help='Путь к YAML-файлу конфигурации (по умолчанию config.yaml)')
    parser.add_argument('--debug', action='store_true',
                       help='Запустить в режиме отладки')

    return parser.parse_args()


def load_environment(env_file: str, args):
    """Загрузка переменных окружения с поддержкой параметров"""
    if os.path.exists(env_file):
        load_dotenv(env_file)
        print(f"✅ Загружены переменные из {env_file}")
    else:
        print(f"⚠️ Файл {env_file} не найден, используются переменные окружения")

    if args.config:
        os.environ['QUEST_CONFIG'] = args.config

    if args.debug:
        os.environ['LOG_LEVEL'] = 'DEBUG'
        print("✅ Включен режим отладки")


def setup_logging():
    """Настройка системы логирования"""
    log_level = os.getenv('LOG_LEVEL', 'INFO')
    log_file = os.getenv('LOG_FILE')

    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    handlers = []

    # Консольный обработчик
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(log_format))
    handlers.append(console_handler)

    # Файловый обработчик
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(logging.Formatter(log_format))
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=log_format,
        handlers=handlers,
        force=True
    )

    # Уровни для внешних библиотек
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('telegram').setLevel(logging.INFO)


def config_path() -> str:
    from config import DEFAULT_CONFIG_PATH
    return os.getenv('QUEST_CONFIG', DEFAULT_CONFIG_PATH)


def check_requirements():
    """Проверка установленных зависимостей"""
    try:
        import telegram
        import dotenv
        import yaml
        import aiohttp
        print("✅ Зависимости установлены")
        return True
    except ImportError as e:
        print(f"❌ Не установлены зависимости: {e}")
        print("Выполните: pip install -e .")
        return False


def check_config():
    """Проверка файла конфигурации"""
    from config import load_config
    from quest_dsl import ConfigurationError

    path = config_path()
    try:
        config = load_config(path)
    except ConfigurationError as e:
        print(f"❌ Ошибка конфигурации: {e}")
        print("\nДля настройки:")
        print("1. Скопируйте config.example.yaml в config.yaml")
        print("2. Получите токены ботов у @BotFather и ключ языковой модели")
        print("3. Заполните .env по образцу .env.example")
        return False

    print(f"✅ Конфигурация {path} корректна, ботов: {len(config.bots)}")
    return True


def check_scenarios():
    """Проверка сценариев: сборка реестра без подключения к сети"""
    from bootstrap import build_registry
    from config import load_config
    from quest_dsl import QuestError

    try:
        registry = build_registry(load_config(config_path()))
    except QuestError as e:
        print(f"❌ Ошибка сценариев: {e}")
        return False

    stats = registry.get_statistics()
    print(f"✅ Сценарии собраны, персонажей: {stats['total_personas']}")
    for persona_id, info in stats['personas'].items():
        print(f"• {persona_id}: состояния {', '.join(info['states'])}")
    return True


def check_photos():
    """Проверка фотографий сценариев"""
    photos_dir = Path("photos")

    if not photos_dir.exists():
        print("⚠️ Директория photos не найдена, фото отправляться не будут")
        return True  # Не критично

    print(f"✅ Фотографий найдено: {len(list(photos_dir.glob('*.png')))}")
    return True


def run_system_checks():
    """Запустить все проверки системы"""
    print("🔍 Проверка квеста...\n")

    checks = [
        ("Зависимости Python", check_requirements),
        ("Конфигурация", check_config),
        ("Сценарии", check_scenarios),
        ("Фотографии", check_photos)
    ]

    all_passed = True
    critical_failed = False

    for check_name, check_func in checks:
        print(f"🔍 Проверка: {check_name}")
        result = check_func()
        if not result:
            all_passed = False
            critical_failed = True
            print()
            break
        print()

    return all_passed, critical_failed


def main():
    """Главная функция"""
    args = parse_arguments()

    print("🕵️ Telegram-квест")
    print("=" * 50)

    load_environment(args.env, args)

    setup_logging()
    logger = logging.getLogger(__name__)

    all_passed, critical_failed = run_system_checks()

    if critical_failed:
        print("❌ Обнаружены критичные проблемы. Исправьте их и запустите снова.")
        sys.exit(1)

    if args.check:
        print("🎉 Конфигурация корректна! Для запуска используйте: python run.py")
        return

    print("🚀 Запускаем квест...")

    from bootstrap import QuestLauncher
    from config import load_config

    try:
        launcher = QuestLauncher(load_config(config_path()))
        exit_code = asyncio.run(launcher.launch())

    except KeyboardInterrupt:
        print("\n👋 Квест остановлен пользователем")
        logger.info("Квест остановлен пользователем")
        exit_code = 0

    except Exception as e:
        print(f"\n❌ Критическая ошибка: {e}")
        logger.error(f"Критическая ошибка: {e}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == '__main__':
    main()
