"""Philosopher collectibles available as gacha rewards."""

PHILOSOPHERS = [
    # Legendary
    {"id": "marcus_aurelius", "name": "Marcus Aurelius", "era": "Antiquity", "school": "Stoicism", "rarity": "legendary",
     "base_stats": {"wisdom": 95, "logic": 85, "rhetoric": 75, "influence": 90, "originality": 70}},
    {"id": "socrates", "name": "Socrates", "era": "Antiquity", "school": "Ethics", "rarity": "legendary",
     "base_stats": {"wisdom": 100, "logic": 85, "rhetoric": 90, "influence": 90, "originality": 80}},
    {"id": "albert_camus", "name": "Albert Camus", "era": "Modernity", "school": "Absurdism", "rarity": "legendary",
     "base_stats": {"wisdom": 70, "logic": 85, "rhetoric": 80, "influence": 85, "originality": 85}},

    # Epic
    {"id": "simone_de_beauvoir", "name": "Simone de Beauvoir", "era": "Modernity", "school": "Existentialism", "rarity": "epic",
     "base_stats": {"wisdom": 85, "logic": 80, "rhetoric": 90, "influence": 85, "originality": 95}},
    {"id": "diogenes", "name": "Diogenes", "era": "Antiquity", "school": "Cynicism", "rarity": "epic",
     "base_stats": {"wisdom": 90, "logic": 70, "rhetoric": 70, "influence": 85, "originality": 95}},
    {"id": "john_locke", "name": "John Locke", "era": "Baroque", "school": "Empiricism", "rarity": "epic",
     "base_stats": {"wisdom": 90, "logic": 80, "rhetoric": 60, "influence": 85, "originality": 80}},

    # Rare
    {"id": "avicenna", "name": "Avicenna", "era": "Early Middle Ages", "school": "Metaphysics", "rarity": "rare",
     "base_stats": {"wisdom": 65, "logic": 85, "rhetoric": 55, "influence": 80, "originality": 70}},
    {"id": "hypatia", "name": "Hypatia", "era": "Late Antiquity", "school": "Neoplatonism", "rarity": "rare",
     "base_stats": {"wisdom": 75, "logic": 80, "rhetoric": 65, "influence": 60, "originality": 70}},
    {"id": "epicurus", "name": "Epicurus", "era": "Antiquity", "school": "Epicureanism", "rarity": "rare",
     "base_stats": {"wisdom": 75, "logic": 60, "rhetoric": 65, "influence": 70, "originality": 75}},

    # Common
    {"id": "zeno_of_citium", "name": "Zeno of Citium", "era": "Antiquity", "school": "Stoicism", "rarity": "common",
     "base_stats": {"wisdom": 60, "logic": 55, "rhetoric": 50, "influence": 50, "originality": 55}},
    {"id": "thales", "name": "Thales of Miletus", "era": "Antiquity", "school": "Pre-Socratics", "rarity": "common",
     "base_stats": {"wisdom": 55, "logic": 60, "rhetoric": 40, "influence": 50, "originality": 60}},
    {"id": "heraclitus", "name": "Heraclitus", "era": "Antiquity", "school": "Pre-Socratics", "rarity": "common",
     "base_stats": {"wisdom": 60, "logic": 50, "rhetoric": 45, "influence": 45, "originality": 65}},
    {"id": "seneca", "name": "Seneca", "era": "Antiquity", "school": "Stoicism", "rarity": "common",
     "base_stats": {"wisdom": 60, "logic": 50, "rhetoric": 60, "influence": 55, "originality": 45}},
    {"id": "boethius", "name": "Boethius", "era": "Late Antiquity", "school": "Scholasticism", "rarity": "common",
     "base_stats": {"wisdom": 55, "logic": 55, "rhetoric": 50, "influence": 45, "originality": 45}},

    # Milestone reward, never drawn from the pool
    {"id": "socrates_special", "name": "Socrates, the Gadfly", "era": "Antiquity", "school": "Ethics", "rarity": "legendary",
     "base_stats": {"wisdom": 100, "logic": 90, "rhetoric": 95, "influence": 90, "originality": 85},
     "pullable": False},
]
