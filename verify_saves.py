import sys
import logging
from pathlib import Path

# Add project root to path
sys.path.append(str(Path(__file__).parent))

from persistence.save import SaveConfig, SaveManager, SaveError

def main():
    logging.basicConfig(level=logging.INFO)
    logger = logging.getLogger("SaveVerification")

    config_path = Path(sys.argv[1]) if len(sys.argv) > 1 else None

    try:
        config = SaveConfig.from_file(config_path) if config_path else SaveConfig()

        # Scan the save directory
        logger.info(f"Scanning {config.save_path}...")
        manager = SaveManager(config)
        manager.initialize()

        slots = manager.get_all_save_slots()
        for number, slot in sorted(slots.items()):
            result = manager.validator.validate(slot)
            logger.info(
                f"Slot {number}: '{slot.metadata.name}' ({slot.metadata.player_name}, "
                f"v{slot.metadata.game_version}) score={result.score:.2f} "
                f"warnings={len(result.warnings)}"
            )

        if manager.auto_save_slot is not None:
            logger.info(f"Auto-save: '{manager.auto_save_slot.metadata.name}'")

        # Every slot file on disk must have made it into the registry
        on_disk = [
            p for p in config.save_path.glob(f"*.{config.file_extension}")
            if p.stem.isdigit()
        ]
        skipped = len(on_disk) - len(slots)
        assert skipped == 0, f"{skipped} slot file(s) failed to load"

        logger.info(f"VERIFICATION SUCCESSFUL: {len(slots)} save slots loaded and validated.")

    except (SaveError, AssertionError) as e:
        logger.error(f"VERIFICATION FAILED: {e}")
        sys.exit(1)

if __name__ == "__main__":
    main()
