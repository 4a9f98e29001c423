import json

from sqlmodel import Session

from testprep import repositories
from testprep.database import engine
from testprep.seed import main


def _question(**overrides):
    item = {
        'test_type': 'SHSAT',
        'subject': 'Math',
        'topic': 'Fractions',
        'question_text': 'What is 1/2 + 1/4?',
        'option_a': '3/4', 'option_b': '1/6', 'option_c': '2/6', 'option_d': '1',
        'correct_answer': 'A',
    }
    item.update(overrides)
    return item


def test_seed_loads_valid_questions_and_skips_bad_ones(tmp_path, capsys):
    path = tmp_path / 'questions.json'
    path.write_text(json.dumps([_question(), _question(topic='Ratios'), _question(correct_answer='E')]), encoding='utf-8')
    assert main([str(path)]) == 0
    assert 'Created 2 questions, skipped 1' in capsys.readouterr().out
    with Session(engine) as session:
        topics = repositories.QuestionRepository(session).list_topics('SHSAT', 'Math')
    assert [t['topic'] for t in topics] == ['Fractions', 'Ratios']


def test_seed_grants_admin(tmp_path, client):
    client.post('/auth/register', json={'username': 'root', 'password': 'pw'})
    path = tmp_path / 'questions.json'
    path.write_text('[]', encoding='utf-8')
    assert main([str(path), '--grant-admin', 'root']) == 0
    assert main([str(path), '--grant-admin', 'nobody']) == 1
    with Session(engine) as session:
        user = repositories.UserRepository(session).get_by_username('root')
        assert repositories.RoleRepository(session).has_role(user.id, 'admin')
