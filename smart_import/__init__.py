"""
Smart Import: import massivo di dati clinici da export CSV di terzi.

Struttura:
- config.py         : impostazioni da variabili d'ambiente (.env)
- db.py             : engine e sessioni SQLAlchemy
- models.py         : modelli ORM e enum
- parser.py         : testo delimitato -> righe (dict colonna -> valore)
- field_mapper.py   : colonne sorgente -> campi canonici (mapping esplicito + fuzzy)
- resolvers.py      : record canonico -> paziente / appuntamento / trattamento
- gateway.py        : unico punto di accesso al DB (letture, insert, upsert, audit)
- orchestrator.py   : ciclo per riga, isolamento errori, riepilogo del job
- api_main.py       : endpoint HTTP (FastAPI)
- cli.py            : import e ispezione job da riga di comando
"""
